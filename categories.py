from enum import Enum


class Category(str, Enum):
    groceries = "groceries"
    utilities = "utilities"
    entertainment = "entertainment"
    transport = "transport"
    housing = "housing"
    healthcare = "healthcare"
    other = "other"

    @classmethod
    def values(cls) -> list[str]:
        return [member.value for member in cls]
