"""StealthDetect: stalkerware detection from intercepted DNS and connection traffic."""

__version__ = "1.0.0"
