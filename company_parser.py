"""
RocketPunch HTML parsing.

Turns the HTML of the company listing (/companies?page=N) and of a company
detail page into plain records. The browser layer hands over page.content()
so every selector used against the site lives here and can be exercised
against static HTML.
"""

import re
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup


# Listing page selectors
LISTING_ITEM_SELECTOR = ".company-list .company.item"
LISTING_NAME_SELECTOR = ".header.name"
LISTING_LINK_SELECTOR = ".link"
# The 4th anchor in the pagination bar is the "next" control; it is absent on the last page
NEXT_PAGE_SELECTOR = "#pagination-wrapper > div > a:nth-child(4)"

# Detail page selectors
DETAIL_ROOT_SELECTOR = "div.pusher"
DETAIL_NAME_SELECTOR = "#company-name > h1"
DETAIL_EMAIL_SELECTOR = "#company-email"
DETAIL_PHONE_SELECTOR = "#company-phone"
DETAIL_DESCRIPTION_SELECTOR = "#company-description"

_WHITESPACE_RE = re.compile(r"\s+")


@dataclass
class CompanyListing:
    """A company reference from one listing page."""
    name: str
    link: str


@dataclass
class CompanyListPage:
    """Everything extracted from one listing page."""
    page_number: int
    listings: list[CompanyListing] = field(default_factory=list)
    has_next: bool = False


@dataclass
class CompanyDetail:
    """Scraped record for one company.

    Field order here is the CSV column order.
    """
    name: str
    email: str = ""
    phone: str = ""
    description: str = ""
    link: str = field(default="", repr=False, compare=False)

    def to_dict(self) -> dict:
        """Convert to dictionary for CSV export (link excluded)."""
        return {
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "description": self.description,
        }


def clean_text(text: Optional[str]) -> str:
    """Collapse newlines, tabs and repeated spaces into single spaces."""
    if not text:
        return ""
    return _WHITESPACE_RE.sub(" ", text).strip()


def _select_text(root, selector: str) -> str:
    el = root.select_one(selector)
    return clean_text(el.get_text(" ")) if el else ""


def parse_company_list(html: str, page_url: str, page_number: int = 1) -> CompanyListPage:
    """Parse one page of the company listing.

    Args:
        html: Page HTML
        page_url: URL the page was loaded from, used to resolve relative links
        page_number: 1-based page number (carried through for reporting)

    Returns:
        CompanyListPage. When the page holds no listings, has_next is False
        and the pagination bar is not inspected.
    """
    soup = BeautifulSoup(html, "html.parser")
    result = CompanyListPage(page_number=page_number)

    for item in soup.select(LISTING_ITEM_SELECTOR):
        name = _select_text(item, LISTING_NAME_SELECTOR)
        link_el = item.select_one(LISTING_LINK_SELECTOR)
        href = (link_el.get("href") or "").strip() if link_el else ""

        if not name or not href:
            continue

        result.listings.append(CompanyListing(name=name, link=urljoin(page_url, href)))

    if not result.listings:
        return result

    result.has_next = soup.select_one(NEXT_PAGE_SELECTOR) is not None
    return result


def parse_company_detail(html: str, link: str = "") -> CompanyDetail:
    """Parse a company detail page.

    Raises:
        ValueError: If the page has no company name.
    """
    soup = BeautifulSoup(html, "html.parser")
    root = soup.select_one(DETAIL_ROOT_SELECTOR) or soup

    name = _select_text(root, DETAIL_NAME_SELECTOR)
    if not name:
        raise ValueError(f"No company name found on {link or 'detail page'}")

    return CompanyDetail(
        name=name,
        email=_select_text(root, DETAIL_EMAIL_SELECTOR),
        phone=_select_text(root, DETAIL_PHONE_SELECTOR),
        description=_select_text(root, DETAIL_DESCRIPTION_SELECTOR),
        link=link,
    )
