"""
Product catalog: categories, document prices, chat per-minute prices, discounts
and time-credit unit prices. All amounts are KRW.
"""
CATEGORIES = (
    "SAJU", "NEW_YEAR", "MONEY", "HAND", "TOJEONG",
    "BREAK_UP", "CAR_PURCHASE", "BUSINESS", "INVESTMENT", "LOVE",
    "DREAM", "LUCKY_NUMBER", "MOVING", "TRAVEL", "COMPATIBILITY",
    "TAROT", "CAREER", "LUCKY_DAY", "NAMING", "DAILY",
)

FORM_TYPES = ("ASK", "DAILY", "TRADITIONAL")

PRODUCT_DOCUMENT = "document"
PRODUCT_CHAT = "chat"
PRODUCT_CREDIT = "credit"

DOCUMENT_PRICES = {category: 5000 for category in CATEGORIES}
DOCUMENT_PRICES.update({
    "SAJU": 15000,
    "NEW_YEAR": 30000,
    "HAND": 18000,
    "TOJEONG": 15000,
    "TAROT": 15000,
    "CAR_PURCHASE": 3000,
    "MOVING": 3000,
})

DOCUMENT_DISCOUNTS = {
    "SAJU": 33,
    "NEW_YEAR": 33,
    "MONEY": 50,
    "HAND": 33,
    "TOJEONG": 33,
}

# 0 = no category-specific rate; the time-credit unit price applies
CHAT_PRICE_PER_MINUTE = {category: 0 for category in CATEGORIES}
CHAT_PRICE_PER_MINUTE["DREAM"] = 800

CHAT_DISCOUNTS = {
    "DREAM": {5: 0, 10: 38, 30: 38},
}

# Time-credit units; FREE is the daily allowance and cannot be purchased
UNIT_FREE = "FREE"
CREDIT_UNITS = {
    "MINUTES_5": 5,
    "MINUTES_10": 10,
    "MINUTES_30": 30,
}
CREDIT_UNIT_PRICES = {
    "MINUTES_5": 1000,
    "MINUTES_10": 1800,
    "MINUTES_30": 5000,
}

CATEGORY_TITLES = {
    "SAJU": "Four Pillars reading",
    "NEW_YEAR": "New year fortune",
    "MONEY": "Wealth and windfall",
    "HAND": "Palm reading",
    "TOJEONG": "Tojeong secret",
    "BREAK_UP": "Reunion outlook",
    "CAR_PURCHASE": "Car purchase timing",
    "BUSINESS": "Business fortune",
    "INVESTMENT": "Investment outlook",
    "LOVE": "Love fortune",
    "DREAM": "Dream interpretation",
    "LUCKY_NUMBER": "Lucky numbers",
    "MOVING": "Moving direction",
    "TRAVEL": "Travel fortune",
    "COMPATIBILITY": "Compatibility",
    "TAROT": "Tarot reading",
    "CAREER": "Career fortune",
    "LUCKY_DAY": "Auspicious days",
    "NAMING": "Naming",
    "DAILY": "Today's fortune",
}
