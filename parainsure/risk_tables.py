"""
Lookup tables for the flight-delay risk model.

Scores are probabilities-of-disruption contributions in [0, 1].  Unknown
keys fall back to the defaults in ``risk_model``.
"""

AIRLINE_RISK: dict[str, float] = {
    "TG": 0.30,  # Thai Airways
    "EK": 0.25,  # Emirates
    "AA": 0.20,  # American Airlines
    "JL": 0.22,  # Japan Airlines
    "QR": 0.18,  # Qatar Airways
    "SQ": 0.15,  # Singapore Airlines
    "MH": 0.28,  # Malaysia Airlines
}

AIRPORT_RISK: dict[str, float] = {
    "BKK": 0.25,  # Suvarnabhumi
    "JFK": 0.20,  # New York
    "NRT": 0.18,  # Narita
    "LAX": 0.15,  # Los Angeles
    "HND": 0.10,  # Tokyo Haneda
    "SIN": 0.12,  # Singapore Changi
    "DXB": 0.16,  # Dubai
    "LHR": 0.22,  # London Heathrow
}

# Inclusive ISO date windows per country code.
HOLIDAY_WINDOWS: dict[str, list[tuple[str, str]]] = {
    "JP": [
        ("2025-04-27", "2025-05-06"),  # Golden Week
        ("2025-12-28", "2026-01-03"),  # New Year
    ],
    "TH": [
        ("2025-04-12", "2025-04-16"),  # Songkran
    ],
    "KR": [
        ("2025-09-07", "2025-09-11"),  # Chuseok
    ],
    "US": [
        ("2025-11-27", "2025-11-28"),  # Thanksgiving
        ("2025-12-24", "2025-12-26"),  # Christmas
    ],
}

# (start_month, end_month, risk); start > end wraps the year end.
SEASONAL_WEATHER_RISK: dict[str, list[tuple[int, int, float]]] = {
    "JP": [
        (1, 2, 0.30),   # snow
        (7, 9, 0.25),   # typhoon
    ],
    "TH": [
        (6, 10, 0.20),  # rainy season
    ],
    "US": [
        (12, 2, 0.25),  # winter
    ],
}
