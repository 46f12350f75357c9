from rapidfuzz import fuzz, process, utils
from rapidfuzz.distance import Levenshtein

from models import TransactionType

EXPENSE_CATEGORIES = (
    "Food & Dining",
    "Transportation",
    "Shopping",
    "Bills & Utilities",
    "Entertainment",
    "Healthcare",
    "Other",
)

INCOME_CATEGORIES = (
    "Salary",
    "Freelance",
    "Investment",
    "Gift",
    "Refund",
    "Other Income",
)

SUGGESTED_CATEGORIES: dict[TransactionType, tuple[str, ...]] = {
    TransactionType.expense: EXPENSE_CATEGORIES,
    TransactionType.income: INCOME_CATEGORIES,
}


def suggest_categories(
    transaction_type: TransactionType, query: str = "", limit: int = 5
) -> list[str]:
    """Rank the suggested categories for a type against free text.

    Names within one edit of the query come first (typos), then the rest of
    the fuzzy matches by score. An empty query returns the list as is.
    """
    options = list(SUGGESTED_CATEGORIES[transaction_type])
    limit = max(limit, 1)
    clean = (query or "").strip()
    if not clean:
        return options[:limit]

    lowered = clean.lower()
    close = [
        name for name in options if Levenshtein.distance(lowered, name.lower()) <= 1
    ]
    ranked = process.extract(
        clean,
        options,
        scorer=fuzz.WRatio,
        processor=utils.default_process,
        limit=None,
        score_cutoff=50,
    )
    results = close + [name for name, _score, _idx in ranked if name not in close]
    return results[:limit]
