"""Category lookup for transactions Plaid left in the generic bucket."""

from splitsync.logging_config import get_logger
from splitsync.schemas.category import Category
from splitsync.schemas.transaction import DEFAULT_CATEGORY, Transaction


logger = get_logger("services.category_resolver")


def lookup_category_by_merchant(
    merchant_name: str, categories: list[Category]
) -> str | None:
    """Match a merchant against each category's merchant table.

    Exact matches are tried across every category first, then containment
    of a listed merchant inside the transaction's merchant name.
    """
    merchant = merchant_name.strip().lower()
    if not merchant:
        return None

    for category in categories:
        if merchant in category.merchants:
            return category.id

    for category in categories:
        if any(term in merchant for term in category.merchants):
            return category.id

    return None


def lookup_category_by_keywords(text: str, categories: list[Category]) -> str | None:
    """First category whose keyword appears in the transaction text."""
    haystack = text.lower()
    for category in categories:
        if any(keyword in haystack for keyword in category.keywords):
            return category.id
    return None


def resolve_category(transaction: Transaction, categories: list[Category]) -> str | None:
    """Return the category a generic transaction should move to, if any."""
    if transaction.plaid_primary_category != DEFAULT_CATEGORY:
        return None

    if transaction.merchant_name:
        category_id = lookup_category_by_merchant(transaction.merchant_name, categories)
        if category_id:
            return category_id

    text = transaction.name or transaction.description
    if text:
        return lookup_category_by_keywords(text, categories)

    return None


def apply_categories(transactions: list[Transaction], categories: list[Category]) -> int:
    """
    Replace the generic provider category on transactions that match a lookup.

    Transactions with a specific provider category are never touched. A
    match overwrites primary and detailed category on the transaction and
    on every split.

    Args:
        transactions: Transactions to update in place.
        categories: Category table, loaded once for the batch.

    Returns:
        Number of transactions re-categorized.
    """
    if not categories:
        return 0

    matched = 0
    for transaction in transactions:
        category_id = resolve_category(transaction, categories)
        if category_id is None:
            continue

        transaction.plaid_primary_category = category_id
        transaction.plaid_detailed_category = category_id
        for split in transaction.splits:
            split.plaid_primary_category = category_id
            split.plaid_detailed_category = category_id
        matched += 1

    logger.debug(f"[Categories] Re-categorized {matched} of {len(transactions)} transactions")
    return matched
