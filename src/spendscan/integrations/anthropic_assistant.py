"""Companion LLM flows: expense categorization and shopping-list help."""

import json
import logging

from spendscan.errors import run_classified
from spendscan.integrations.anthropic_extractor import AnthropicStage
from spendscan.models import (
    CategorizeExpenseOutput,
    ExpenseHistoryItem,
    ShoppingListItem,
    ShoppingRequestOutput,
    ShoppingSuggestions,
)
from spendscan.utils.category_cache import CategoryCache

logger = logging.getLogger(__name__)

STAGE_CATEGORIZE = "categorize"
STAGE_SUGGEST = "suggest"
STAGE_SHOPPING_REQUEST = "shopping_request"

EXPENSE_CATEGORIES = [
    "Food",
    "Transportation",
    "Utilities",
    "Entertainment",
    "Healthcare",
    "Shopping",
    "Other",
]


class AnthropicCategorizer(AnthropicStage):
    """Assigns a spending category to each item in a piece of receipt text."""

    system_template = "assistant_system.jinja2"

    async def categorize(self, receipt_text: str) -> CategorizeExpenseOutput:
        user_prompt = self._render(
            "categorize_user.jinja2",
            RECEIPT_TEXT=receipt_text,
            CATEGORIES=EXPENSE_CATEGORIES,
        )
        parsed = await run_classified(
            STAGE_CATEGORIZE, self._parse(user_prompt, CategorizeExpenseOutput)
        )
        return CategorizeExpenseOutput.model_validate(parsed)


class CategorySuggester:
    """Suggests a category for a manually entered item, cache first."""

    def __init__(self, categorizer: AnthropicCategorizer, cache: CategoryCache):
        self.categorizer = categorizer
        self.cache = cache

    async def suggest(self, item_name: str) -> str | None:
        """
        Return a category for ``item_name``, or None if the model offered none.

        A cached answer for the same (case-insensitive) name skips the model
        call; a fresh answer overwrites whatever was cached before.
        """
        cached = self.cache.get(item_name)
        if cached:
            logger.debug("Category cache hit for %r: %s", item_name, cached)
            return cached

        result = await self.categorizer.categorize(item_name)
        if not result.categories:
            return None

        category = result.categories[0].category
        if category not in EXPENSE_CATEGORIES:
            logger.info("Model suggested non-standard category %r", category)
        self.cache.set(item_name, category)
        return category


class AnthropicShoppingAssistant(AnthropicStage):
    """Shopping-list suggestions drawn from the user's purchase history."""

    system_template = "assistant_system.jinja2"

    async def suggest_items(
        self, past_purchases: list[str], number_of_suggestions: int = 3
    ) -> list[str]:
        user_prompt = self._render(
            "suggest_user.jinja2",
            PAST_PURCHASES=past_purchases,
            NUMBER_OF_SUGGESTIONS=number_of_suggestions,
        )
        parsed = await run_classified(
            STAGE_SUGGEST, self._parse(user_prompt, ShoppingSuggestions)
        )
        return ShoppingSuggestions.model_validate(parsed).suggested_items

    async def process_request(
        self, user_prompt: str, expense_history: list[ExpenseHistoryItem]
    ) -> list[ShoppingListItem]:
        """
        Turn a natural language request ("I need eggs and milk") into shopping
        list items, each priced at the cheapest match found in the history.
        """
        history_json = json.dumps(
            [
                item.model_dump(by_alias=True, exclude_none=True)
                for item in expense_history
            ],
            ensure_ascii=False,
        )
        prompt = self._render(
            "shopping_request_user.jinja2",
            USER_PROMPT=user_prompt,
            EXPENSE_HISTORY=history_json,
        )
        parsed = await run_classified(
            STAGE_SHOPPING_REQUEST, self._parse(prompt, ShoppingRequestOutput)
        )
        return ShoppingRequestOutput.model_validate(parsed).items_to_add
