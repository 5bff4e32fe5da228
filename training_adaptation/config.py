"""Configuration management for the training adaptation core."""

import os
from dotenv import load_dotenv

load_dotenv()


class Config:
    """Application configuration."""

    # Database (optional snapshot store)
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./training_adaptation.db")

    # Load model time constants (days)
    CTL_TIME_CONSTANT: float = float(os.getenv("CTL_TIME_CONSTANT", "42"))
    ATL_TIME_CONSTANT: float = float(os.getenv("ATL_TIME_CONSTANT", "7"))
    ATL_WINDOW_DAYS: int = int(os.getenv("ATL_WINDOW_DAYS", "7"))

    # Cross-training TSS estimation defaults
    CROSS_TRAINING_TSS_PER_HOUR: float = float(os.getenv("CROSS_TRAINING_TSS_PER_HOUR", "50"))
    CROSS_TRAINING_INTENSITY_MULTIPLIER: float = float(os.getenv("CROSS_TRAINING_INTENSITY_MULTIPLIER", "0.12"))
    CROSS_TRAINING_MIN_INTENSITY_FACTOR: float = 0.3

    # Decoupling estimate (averages only)
    DECOUPLING_REFERENCE_POWER: float = float(os.getenv("DECOUPLING_REFERENCE_POWER", "250"))
    DECOUPLING_DEFAULT_POWER_VARIABILITY: float = 1.3

    # Adaptation classification
    STIMULUS_MATCH_LOW_PCT: float = float(os.getenv("STIMULUS_MATCH_LOW_PCT", "90"))
    STIMULUS_MATCH_HIGH_PCT: float = float(os.getenv("STIMULUS_MATCH_HIGH_PCT", "110"))
    SUBSTITUTION_IF_RATIO: float = float(os.getenv("SUBSTITUTION_IF_RATIO", "0.75"))
    FATIGUED_TSB_THRESHOLD: float = float(os.getenv("FATIGUED_TSB_THRESHOLD", "-20"))

    # Activity matching for week detection
    MATCH_MAX_DAYS_APART: int = int(os.getenv("MATCH_MAX_DAYS_APART", "1"))
    MATCH_MIN_SCORE: float = float(os.getenv("MATCH_MIN_SCORE", "40"))

    # Pattern aggregation
    MIN_DATA_FOR_PREDICTIONS: int = int(os.getenv("MIN_DATA_FOR_PREDICTIONS", "20"))

    # Application
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def stimulus_band(cls) -> tuple:
        """Return the (low, high) stimulus percentage band counted as completed."""
        return cls.STIMULUS_MATCH_LOW_PCT, cls.STIMULUS_MATCH_HIGH_PCT

    @classmethod
    def validate(cls) -> bool:
        """Validate configuration values that depend on each other."""
        if cls.CTL_TIME_CONSTANT <= 0 or cls.ATL_TIME_CONSTANT <= 0:
            raise ValueError("CTL_TIME_CONSTANT and ATL_TIME_CONSTANT must be positive")
        if cls.STIMULUS_MATCH_LOW_PCT > cls.STIMULUS_MATCH_HIGH_PCT:
            raise ValueError(
                "STIMULUS_MATCH_LOW_PCT must not exceed STIMULUS_MATCH_HIGH_PCT"
            )
        if not 0 < cls.SUBSTITUTION_IF_RATIO <= 1:
            raise ValueError("SUBSTITUTION_IF_RATIO must be in (0, 1]")
        return True


config = Config()
