"""tootoo — end-of-day LLM stock recommendation job."""

__version__ = "0.1.0"
