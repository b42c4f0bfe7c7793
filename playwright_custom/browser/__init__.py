from .local_playwright_browser import LocalPlaywrightBrowser, PlaywrightBrowserProvider

__all__ = ["LocalPlaywrightBrowser", "PlaywrightBrowserProvider"]
