"""RuneSwap: Rune/BTC swap and Rune-collateralized loan orchestration."""

__version__ = "0.4.0"
