"""
TASKPILOT identity — version, codename and banner.
"""

__version__ = "0.3.0"
__codename__ = "TASKPILOT"
__tagline__ = "Plan Big. Run Long. Report Back."

BANNER = r"""
 _____ _   ___ _  _____ ___ _    ___ _____
|_   _/_\ / __| |/ / _ \_ _| |  / _ \_   _|
  | |/ _ \\__ \ ' <|  _/| || |_| (_) || |
  |_/_/ \_\___/_|\_\_| |___|____\___/ |_|
"""
