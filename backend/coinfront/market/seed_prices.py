"""Seed prices and per-coin parameters for the offline market simulator."""

# Starting USD prices for the tracked coins (rough levels, not live data)
SEED_PRICES: dict[str, float] = {
    "bitcoin": 50000.00,
    "ethereum": 3000.00,
    "tether": 1.00,
    "binancecoin": 400.00,
    "solana": 100.00,
    "ripple": 0.55,
    "cardano": 0.50,
    "dogecoin": 0.08,
    "polkadot": 7.00,
    "chainlink": 15.00,
}

# symbol / display name for the markets overview
COIN_INFO: dict[str, tuple[str, str]] = {
    "bitcoin": ("btc", "Bitcoin"),
    "ethereum": ("eth", "Ethereum"),
    "tether": ("usdt", "Tether"),
    "binancecoin": ("bnb", "BNB"),
    "solana": ("sol", "Solana"),
    "ripple": ("xrp", "XRP"),
    "cardano": ("ada", "Cardano"),
    "dogecoin": ("doge", "Dogecoin"),
    "polkadot": ("dot", "Polkadot"),
    "chainlink": ("link", "Chainlink"),
}

# Circulating supply used to derive market cap
CIRCULATING_SUPPLY: dict[str, float] = {
    "bitcoin": 19_600_000,
    "ethereum": 120_000_000,
    "tether": 95_000_000_000,
    "binancecoin": 150_000_000,
    "solana": 440_000_000,
    "ripple": 54_000_000_000,
    "cardano": 35_000_000_000,
    "dogecoin": 143_000_000_000,
    "polkadot": 1_300_000_000,
    "chainlink": 580_000_000,
}

# Per-coin GBM parameters
# sigma: annualized volatility (crypto trades 24/7, so years are calendar years)
# mu: annualized drift
COIN_PARAMS: dict[str, dict[str, float]] = {
    "bitcoin": {"sigma": 0.60, "mu": 0.10},
    "ethereum": {"sigma": 0.75, "mu": 0.10},
    "tether": {"sigma": 0.01, "mu": 0.0},  # Stablecoin
    "solana": {"sigma": 1.10, "mu": 0.10},
    "dogecoin": {"sigma": 1.20, "mu": 0.05},
}

# Default parameters for coins not listed above
DEFAULT_PARAMS: dict[str, float] = {"sigma": 0.90, "mu": 0.05}
