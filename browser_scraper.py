"""
Browser-based scraper for the RocketPunch company directory.

Drives a Playwright browser (Chromium, or Camoufox when configured) through
login, the paginated /companies listing, and each company's detail page.
Detail pages for one listing page are fetched concurrently, each in its own
page, with a fixed upper bound on how many are open at once.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional
from urllib.parse import urlparse

from playwright.async_api import async_playwright
from rich.console import Console

from company_parser import (
    CompanyDetail,
    CompanyListing,
    CompanyListPage,
    parse_company_detail,
    parse_company_list,
)


LOGIN_PATH = "/login"
COMPANIES_PATH = "/companies"

LOGIN_EMAIL_SELECTOR = "#id-login-email"
LOGIN_PASSWORD_SELECTOR = "#id-login-password"
LOGIN_SUBMIT_SELECTOR = "button[type='submit']"

# Elements that signal the page has rendered enough to parse
LISTING_READY_SELECTOR = ".ui.segment"
DETAIL_READY_SELECTOR = "div.company-main"

SUPPORTED_BROWSERS = ("chromium", "camoufox")

console = Console()


class AuthenticationError(Exception):
    """Login was rejected or the post-login navigation never happened."""


@dataclass
class Credentials:
    """RocketPunch login (email address or phone number + password)."""
    email_or_phone: str
    password: str = field(repr=False)


@dataclass
class ScrapeError:
    """Record of a failed step during a scrape run.

    Attributes:
        stage: Where it failed (auth, list, detail, browser)
        target: Page number or detail URL being fetched
        error_type: Category from classify_error
        error_message: Truncated error message (first 500 chars)
        timestamp: When the error occurred
        exception_class: The exception class name
    """
    stage: str
    target: str
    error_type: str
    error_message: str
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())
    exception_class: str = ""

    @classmethod
    def from_exception(cls, stage: str, target, error: BaseException) -> "ScrapeError":
        return cls(
            stage=stage,
            target=str(target),
            error_type=classify_error(error),
            error_message=str(error)[:500],
            exception_class=type(error).__name__,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON export."""
        result = {
            "stage": self.stage,
            "target": self.target,
            "error_type": self.error_type,
            "error_message": self.error_message,
            "timestamp": self.timestamp,
        }
        if self.exception_class:
            result["exception_class"] = self.exception_class
        return result


@dataclass
class ScrapeStats:
    """Overall statistics for a scrape run."""
    run_id: str
    start_time: str = field(default_factory=lambda: datetime.now().isoformat())
    end_time: Optional[str] = None
    pages_scraped: int = 0
    page_errors: int = 0
    listings_found: int = 0
    details_collected: int = 0
    details_failed: int = 0

    def finish(self) -> None:
        """Mark the run as complete."""
        self.end_time = datetime.now().isoformat()

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON export."""
        return {
            "metadata": {
                "run_id": self.run_id,
                "start_time": self.start_time,
                "end_time": self.end_time,
            },
            "pages": {
                "scraped": self.pages_scraped,
                "errors": self.page_errors,
            },
            "companies": {
                "listings_found": self.listings_found,
                "details_collected": self.details_collected,
                "details_failed": self.details_failed,
                "success_rate": round(self.details_collected / self.listings_found * 100, 1) if self.listings_found > 0 else 0.0,
            },
        }


def classify_error(error: BaseException) -> str:
    """Classify an exception into an error type category.

    Returns:
        Error type string: auth, timeout, blocked, connection, parse, or unknown
    """
    if isinstance(error, AuthenticationError):
        return "auth"

    error_str = str(error).lower()
    error_type = type(error).__name__.lower()

    if any(x in error_str for x in ["timeout", "timed out"]) or "timeout" in error_type:
        return "timeout"

    if any(x in error_str for x in ["403", "forbidden", "blocked", "captcha", "access denied"]):
        return "blocked"

    if any(x in error_str for x in ["net::err", "connection", "network", "dns", "refused"]) or "connection" in error_type:
        return "connection"

    if isinstance(error, ValueError):
        return "parse"

    return "unknown"


def is_login_url(url: str) -> bool:
    """True if the URL is still the login page."""
    return urlparse(url or "").path.rstrip("/").endswith(LOGIN_PATH)


@asynccontextmanager
async def launch_browser(config: dict):
    """Launch the configured browser and close it on exit.

    Yields:
        Playwright Browser instance
    """
    browser_name = config.get("browser", "chromium")

    if browser_name == "chromium":
        async with async_playwright() as p:
            launch_kwargs = {"headless": config["headless"]}
            if config.get("executable_path"):
                launch_kwargs["executable_path"] = config["executable_path"]

            browser = await p.chromium.launch(**launch_kwargs)
            console.print(f"[Browser] {config.get('executable_path') or p.chromium.executable_path}", style="bright_black", markup=False)
            try:
                yield browser
            finally:
                await browser.close()

    elif browser_name == "camoufox":
        from camoufox.async_api import AsyncCamoufox

        async with AsyncCamoufox(headless=config["headless"]) as browser:
            console.print("[Browser] Camoufox 브라우저를 시작했습니다.", style="bright_black", markup=False)
            yield browser

    else:
        raise ValueError(f"Unsupported browser '{browser_name}', expected one of {SUPPORTED_BROWSERS}")


async def new_scraping_context(browser, config: dict):
    """Create an isolated browser context with Korean locale headers."""
    return await browser.new_context(
        locale=config["locale"],
        extra_http_headers={"accept-language": config["accept_language"]},
    )


async def auth(context, credentials: Credentials, config: dict) -> None:
    """Log in with the provided credentials.

    Raises:
        AuthenticationError: If the form submission does not navigate away
            from the login page within login_timeout_ms.
    """
    login_url = f"{config['base_url'].rstrip('/')}{LOGIN_PATH}"
    page = await context.new_page()

    try:
        await page.goto(login_url, wait_until="domcontentloaded", timeout=config["navigation_timeout_ms"])

        await page.fill(LOGIN_EMAIL_SELECTOR, credentials.email_or_phone)
        await page.fill(LOGIN_PASSWORD_SELECTOR, credentials.password)

        async with page.expect_navigation(timeout=config["login_timeout_ms"]):
            await page.click(LOGIN_SUBMIT_SELECTOR)

        if is_login_url(page.url):
            raise AuthenticationError("Still on the login page after submitting credentials")

    except AuthenticationError:
        console.print("[auth] 로그인에 실패하였습니다. (아이디와 비밀번호를 확인해주세요)", style="red", markup=False)
        raise
    except Exception as e:
        console.print("[auth] 로그인에 실패하였습니다. (아이디와 비밀번호를 확인해주세요)", style="red", markup=False)
        raise AuthenticationError(f"Login failed: {str(e)[:200]}") from e
    finally:
        await page.close()


async def get_company_list(context, page_number: int, config: dict) -> CompanyListPage:
    """Fetch and parse one page of the company listing."""
    url = f"{config['base_url'].rstrip('/')}{COMPANIES_PATH}?page={page_number}"
    page = await context.new_page()

    try:
        await page.goto(url, wait_until="networkidle", timeout=config["navigation_timeout_ms"])
        await page.wait_for_selector(LISTING_READY_SELECTOR, timeout=config["navigation_timeout_ms"])

        html = await page.content()
        return parse_company_list(html, url, page_number)

    except Exception as e:
        console.print(f"  [list] '{page_number} 페이지'의 정보를 가져오는 중 오류가 발생했습니다: {str(e)[:100]}", style="red", markup=False)
        raise
    finally:
        await page.close()


async def get_company_detail(context, link: str, config: dict) -> CompanyDetail:
    """Fetch and parse a company's detail page."""
    page = await context.new_page()

    try:
        await page.goto(link, wait_until="domcontentloaded", timeout=config["navigation_timeout_ms"])
        await page.wait_for_selector(DETAIL_READY_SELECTOR, timeout=config["navigation_timeout_ms"])

        html = await page.content()
        return parse_company_detail(html, link)

    except Exception as e:
        console.print(f"  [detail] '{link}'의 정보를 가져오는 중 오류가 발생했습니다: {str(e)[:100]}", style="red", markup=False)
        raise
    finally:
        await page.close()


async def fetch_company_details(context, listings: list[CompanyListing], config: dict) -> list:
    """Fetch detail pages with at most max_concurrency in flight.

    Returns:
        One entry per listing, in listing order: a CompanyDetail, or the
        exception that fetch raised. Returns only after every fetch settles.
    """
    semaphore = asyncio.Semaphore(config["max_concurrency"])

    async def fetch_one(listing: CompanyListing) -> CompanyDetail:
        async with semaphore:
            detail = await get_company_detail(context, listing.link, config)
            console.print(f"  ⌙ 이름: {detail.name}", style="bright_blue", markup=False)
            return detail

    return await asyncio.gather(*(fetch_one(listing) for listing in listings), return_exceptions=True)


async def scrape_companies(
    context,
    config: dict,
    stats: ScrapeStats = None,
    details: list[CompanyDetail] = None,
    errors: list[ScrapeError] = None,
) -> tuple[list[CompanyDetail], list[ScrapeError]]:
    """Walk the company listing page by page and collect every detail.

    Stops when a page has no listings, when a page has no next-page control
    (after processing it), after max_pages, or after
    max_consecutive_page_errors listing failures in a row.

    details and errors are appended to in place when given, so callers keep
    partial results if the browser dies mid-run.
    """
    if details is None:
        details = []
    if errors is None:
        errors = []

    max_pages = config.get("max_pages")
    max_page_errors = config["max_consecutive_page_errors"]
    consecutive_failures = 0
    page_number = 1

    while max_pages is None or page_number <= max_pages:
        try:
            list_page = await get_company_list(context, page_number, config)
        except Exception as e:
            errors.append(ScrapeError.from_exception("list", page_number, e))
            if stats:
                stats.page_errors += 1
            consecutive_failures += 1
            if consecutive_failures >= max_page_errors:
                console.print(f"[RocketPunch] {consecutive_failures}개 페이지 연속 실패, 수집을 중단합니다.", style="red", markup=False)
                break
            page_number += 1
            continue

        consecutive_failures = 0
        if stats:
            stats.pages_scraped += 1

        if not list_page.listings:
            console.print(f"[RocketPunch] {page_number} 페이지에 회사 정보가 없습니다. 수집을 종료합니다.", style="yellow", markup=False)
            break

        if stats:
            stats.listings_found += len(list_page.listings)
        console.print(f"\n[RocketPunch] {page_number} 페이지에서 {len(list_page.listings)}개의 회사 정보를 수집 중 ...\n", style="black on green", markup=False)

        results = await fetch_company_details(context, list_page.listings, config)

        for listing, result in zip(list_page.listings, results):
            if isinstance(result, BaseException):
                errors.append(ScrapeError.from_exception("detail", listing.link, result))
                if stats:
                    stats.details_failed += 1
            else:
                details.append(result)
                if stats:
                    stats.details_collected += 1

        if not list_page.has_next:
            break
        page_number += 1

    return details, errors


async def scrape_with_browser(
    credentials: Credentials,
    config: dict,
) -> tuple[list[CompanyDetail], list[ScrapeError], ScrapeStats]:
    """Launch the browser, log in, and scrape every company.

    Returns:
        Tuple of (company details, errors, run stats)

    Raises:
        AuthenticationError: Login failed; nothing was scraped.
    """
    stats = ScrapeStats(run_id=datetime.now().strftime('%Y%m%d_%H%M%S'))
    details = []
    errors = []

    try:
        async with launch_browser(config) as browser:
            context = await new_scraping_context(browser, config)
            try:
                await auth(context, credentials, config)
                console.print("\n[auth] ✅ 로그인에 성공하였습니다.\n", style="green", markup=False)

                await scrape_companies(context, config, stats, details, errors)
            finally:
                await context.close()

    except AuthenticationError:
        raise
    except Exception as e:
        console.print(f"[Browser] 브라우저 오류로 수집을 중단합니다: {str(e)[:200]}", style="red", markup=False)
        errors.append(ScrapeError.from_exception("browser", "*", e))

    stats.finish()
    return details, errors, stats


def run_browser_scraper(
    credentials: Credentials,
    config: dict,
) -> tuple[list[CompanyDetail], list[ScrapeError], ScrapeStats]:
    """Synchronous wrapper for the async browser scraper."""
    return asyncio.run(scrape_with_browser(credentials, config))
