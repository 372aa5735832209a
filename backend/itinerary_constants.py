"""
旅程生成で共有する定数・アクティビティカタログ。
Shared constants and the activity catalog for itinerary generation.
"""

import os
import re

# アクティビティカタログ（フラグ名 -> 表示名と時間枠）
# Activity catalog keyed by tour flag name -> display name and timing slots
ACTIVITY_CATALOG = {
    "city_tour": {
        "name": "City Tour",
        "timings": ["10:00~10:15 AM - 12:00 PM", "3:00 PM - 4:30 PM"],
    },
    "fishing": {
        "name": "Ice Fishing",
        "timings": ["10:30~10:50 AM - 1:45 PM", "9:30~9:50 AM - 12:45 PM"],
    },
    "dog_sledging": {
        "name": "Dog Sledging",
        "timings": ["1:30~1:45 PM - 3:30 PM"],
    },
    "snowmobile_atv": {
        "name": "Snowmobile",
        "timings": ["10:00~10:15 AM - 11:30 AM", "1:30~1:45 PM - 3:00 PM"],
    },
    "hiking": {
        "name": "Cameron Fall Hiking",
        "timings": ["1:00~1:15 PM - 3:00 PM", "1:30~1:45 PM - 5:00 PM"],
    },
    "aurora_village": {
        "name": "Ice Lake Tour",
        "timings": ["11:00 AM - 12:00 PM", "2:00~2:15 PM - 3:30 PM"],
    },
    "nlt": {
        "name": "Aurora Viewing",
        "timings": ["9:30~9:50 PM - 1:30 AM", "10:00~10:15 PM - 2:00 AM"],
    },
}

# ランダム割り当て対象のフラグ（カタログと同じ順序で評価する）
# Flags considered by the random assigner, evaluated in this order
SCHEDULABLE_FLAGS = (
    "city_tour",
    "fishing",
    "dog_sledging",
    "snowmobile_atv",
    "hiking",
    "aurora_village",
    "nlt",
)

# 月次集計で数えるフラグ（カタログ外の snowshoe / dnr を含む）
# Flags counted by the monthly plan, including non-schedulable ones
MONTHLY_FLAGS = (
    "hiking",
    "fishing",
    "dog_sledging",
    "snowmobile_atv",
    "aurora_village",
    "city_tour",
    "snowshoe",
    "dnr",
    "nlt",
)

# フラグ有効値（ランダム割り当ては大文字小文字を区別する）
# Enabled flag value; the random assigner compares it case-sensitively
FLAG_ENABLED_VALUE = "Yes"

# 日付・時刻フィールドの区切り文字
# Separator inside arrival/departure descriptors ("date | time | flight")
DESCRIPTOR_SEPARATOR = "|"
ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

# 旅程表に表示する固定文言
# Fixed texts shown in the itinerary table
ARRIVAL_DAY_LABEL = "Arrival Day"
EMPTY_CELL = "-"
FREE_ACTIVITY_TEXT = "*Free activity"
SELF_PAY_PREFIX = "*Optional (Self-pay) - "
SHUTTLE_NOTICE = (
    "Shuttle service is scheduled 2 hours before the departure flight. "
    "Please wait in the lobby of your accommodation."
)
GEAR_COLLECTION_SUFFIX = "(Cold-weather gear will be collected)"

# 印刷用テンプレートの文言
# Texts used by the print template
PRINT_TITLE = os.getenv("PRINT_TITLE", "Guest Arrival Schedule")
PRINT_WELCOME_TEXT = os.getenv("PRINT_WELCOME_TEXT", "WELCOME TO YOUR ARCTIC ADVENTURE")
PRINT_FOOTER_TEXT = os.getenv(
    "PRINT_FOOTER_TEXT",
    "Welcome to the Arctic! We look forward to making your stay unforgettable "
    "with authentic experiences and warm hospitality.",
)
