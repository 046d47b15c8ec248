"""Seed data for the offline market simulator."""

# Previous-close prices the simulator opens from
SEED_PRICES: dict[str, float] = {
    "AAPL": 190.00,
    "GOOGL": 175.00,
    "MSFT": 420.00,
    "AMZN": 185.00,
    "TSLA": 250.00,
    "NVDA": 800.00,
    "META": 500.00,
    "JPM": 195.00,
    "V": 280.00,
    "NFLX": 600.00,
}

# Annualized GBM volatility per ticker; unknown tickers get DEFAULT_SIGMA
TICKER_SIGMA: dict[str, float] = {
    "AAPL": 0.22,
    "GOOGL": 0.25,
    "MSFT": 0.20,
    "AMZN": 0.28,
    "TSLA": 0.50,
    "NVDA": 0.40,
    "META": 0.30,
    "JPM": 0.18,
    "V": 0.17,
    "NFLX": 0.35,
}
DEFAULT_SIGMA = 0.25
DEFAULT_MU = 0.05

# Profile bodies in the upstream shape: name, website, exchange, industry, cap (millions)
SEED_PROFILES: dict[str, tuple[str, str, str, str, float]] = {
    "AAPL": ("Apple Inc", "https://www.apple.com/", "NASDAQ NMS - GLOBAL MARKET", "Technology", 2_950_000.0),
    "GOOGL": ("Alphabet Inc", "https://abc.xyz/", "NASDAQ NMS - GLOBAL MARKET", "Media", 2_150_000.0),
    "MSFT": ("Microsoft Corp", "https://www.microsoft.com/", "NASDAQ NMS - GLOBAL MARKET", "Technology", 3_100_000.0),
    "AMZN": ("Amazon.com Inc", "https://www.amazon.com/", "NASDAQ NMS - GLOBAL MARKET", "Retail", 1_900_000.0),
    "TSLA": ("Tesla Inc", "https://www.tesla.com/", "NASDAQ NMS - GLOBAL MARKET", "Automobiles", 800_000.0),
    "NVDA": ("NVIDIA Corp", "https://www.nvidia.com/", "NASDAQ NMS - GLOBAL MARKET", "Semiconductors", 2_200_000.0),
    "META": ("Meta Platforms Inc", "https://about.meta.com/", "NASDAQ NMS - GLOBAL MARKET", "Media", 1_250_000.0),
    "JPM": ("JPMorgan Chase & Co", "https://www.jpmorganchase.com/", "NEW YORK STOCK EXCHANGE, INC.", "Banking", 560_000.0),
    "V": ("Visa Inc", "https://usa.visa.com/", "NEW YORK STOCK EXCHANGE, INC.", "Financial Services", 570_000.0),
    "NFLX": ("Netflix Inc", "https://www.netflix.com/", "NASDAQ NMS - GLOBAL MARKET", "Media", 260_000.0),
}
