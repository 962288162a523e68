"""
RocketPunch company directory scraper.

Logs into rocketpunch.com, walks the company listing and writes every
company's name, email, phone and description to companies.csv.

Usage:
    python scraper.py

Credentials are prompted for, or read from ROCKETPUNCH_ID and
ROCKETPUNCH_PASSWORD when both are set.
"""

import getpass
import json
import os
import re
import sys
from dataclasses import fields
from datetime import datetime
from pathlib import Path

import pandas as pd
from rich.console import Console

from browser_scraper import (
    SUPPORTED_BROWSERS,
    AuthenticationError,
    Credentials,
    ScrapeError,
    ScrapeStats,
    run_browser_scraper,
)
from company_parser import CompanyDetail


LOGO = r"""
 ____            _        _   ____                   _
|  _ \ ___   ___| | _____| |_|  _ \ _   _ _ __   ___| |__
| |_) / _ \ / __| |/ / _ \ __| |_) | | | | '_ \ / __| '_ \
|  _ < (_) | (__|   <  __/ |_|  __/| |_| | | | | (__| | | |
|_| \_\___/ \___|_|\_\___|\__|_|    \__,_|_| |_|\___|_| |_|
"""

DEFAULT_CONFIG_PATH = Path(__file__).parent / "config" / "scraper-config.json"

DEFAULT_CONFIG = {
    "base_url": "https://www.rocketpunch.com",
    "browser": "chromium",
    "headless": True,
    "executable_path": None,
    "locale": "ko-KR",
    "accept_language": "ko,en-US;q=0.9,en;q=0.8,ko-KR;q=0.7,ro;q=0.6,vi;q=0.5",
    "max_concurrency": 10,
    "navigation_timeout_ms": 30000,
    "login_timeout_ms": 5000,
    "max_consecutive_page_errors": 3,
    "max_pages": None,
    "output_file": "companies.csv",
    "error_dir": "output",
}

REQUIRED_CONFIG_KEYS = ["base_url", "max_concurrency", "output_file"]
INT_CONFIG_KEYS = ["max_concurrency", "navigation_timeout_ms", "login_timeout_ms", "max_consecutive_page_errors"]

# Phone numbers such as +82-2-555-0100 only contain arithmetic characters, so they are left alone
_PHONE_LIKE_RE = re.compile(r"^\+?\(?\d[\d\s\-().]*$")

console = Console()


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def apply_env_overrides(config: dict, environ: dict = None) -> dict:
    """Apply ROCKETPUNCH_* environment variables on top of a config dict."""
    if environ is None:
        environ = os.environ

    config = dict(config)
    if environ.get("ROCKETPUNCH_MAX_CONCURRENCY"):
        config["max_concurrency"] = int(environ["ROCKETPUNCH_MAX_CONCURRENCY"])
    if environ.get("ROCKETPUNCH_HEADLESS"):
        config["headless"] = _parse_bool(environ["ROCKETPUNCH_HEADLESS"])
    if environ.get("ROCKETPUNCH_BROWSER"):
        config["browser"] = environ["ROCKETPUNCH_BROWSER"].strip().lower()
    if environ.get("ROCKETPUNCH_OUTPUT"):
        config["output_file"] = environ["ROCKETPUNCH_OUTPUT"]
    if environ.get("ROCKETPUNCH_MAX_PAGES"):
        config["max_pages"] = int(environ["ROCKETPUNCH_MAX_PAGES"])
    return config


def validate_config(config: dict) -> dict:
    """Coerce integer settings and check value ranges.

    Raises:
        ValueError: If a value is not an integer, out of range or unsupported.
    """
    config = dict(config)
    int_keys = INT_CONFIG_KEYS + (["max_pages"] if config["max_pages"] is not None else [])
    for key in int_keys:
        try:
            config[key] = int(config[key])
        except (TypeError, ValueError):
            raise ValueError(f"{key} must be an integer, got {config[key]!r}") from None

    if config["max_concurrency"] < 1:
        raise ValueError(f"max_concurrency must be >= 1, got {config['max_concurrency']}")
    if config["browser"] not in SUPPORTED_BROWSERS:
        raise ValueError(f"browser must be one of {SUPPORTED_BROWSERS}, got '{config['browser']}'")
    if config["max_consecutive_page_errors"] < 1:
        raise ValueError(f"max_consecutive_page_errors must be >= 1, got {config['max_consecutive_page_errors']}")
    if config["max_pages"] is not None and config["max_pages"] < 1:
        raise ValueError(f"max_pages must be >= 1 or null, got {config['max_pages']}")
    return config


def load_scraper_config(config_path: Path = None, environ: dict = None) -> dict:
    """Load scraper configuration from JSON file.

    Args:
        config_path: Path to config file. Defaults to ROCKETPUNCH_CONFIG, then
                     config/scraper-config.json relative to this file. When no
                     path is given and the bundled file is absent (a regular
                     pip install), DEFAULT_CONFIG is used as is.
        environ: Environment mapping for overrides (defaults to os.environ)

    Returns:
        Configuration dictionary with every DEFAULT_CONFIG key present.

    Raises:
        ValueError: If required keys are missing or values are invalid.
        OSError: If an explicitly given config file cannot be read.
    """
    if environ is None:
        environ = os.environ

    if config_path is None and environ.get("ROCKETPUNCH_CONFIG"):
        config_path = Path(environ["ROCKETPUNCH_CONFIG"])

    if config_path is None and not DEFAULT_CONFIG_PATH.exists():
        file_config = {}
    else:
        with open(config_path or DEFAULT_CONFIG_PATH, encoding="utf-8") as f:
            file_config = json.load(f)

        missing = [k for k in REQUIRED_CONFIG_KEYS if k not in file_config]
        if missing:
            raise ValueError(f"Scraper config missing required keys: {missing}")

    config = {**DEFAULT_CONFIG, **file_config}
    config = apply_env_overrides(config, environ)
    return validate_config(config)


def get_credentials(input_func=input, password_func=getpass.getpass, environ: dict = None) -> Credentials:
    """Read login credentials from the environment or prompt for them.

    Raises:
        ValueError: If either value is empty.
    """
    if environ is None:
        environ = os.environ

    email_or_phone = environ.get("ROCKETPUNCH_ID", "")
    password = environ.get("ROCKETPUNCH_PASSWORD", "")

    if not (email_or_phone and password):
        console.print("\n\n로켓펀치 계정을 입력하세요 ...", style="black on green", markup=False)
        email_or_phone = input_func("휴대전화 번호 혹은 이메일: ")
        password = password_func("비밀번호: ")

    email_or_phone = (email_or_phone or "").strip()
    if not email_or_phone or not password:
        raise ValueError("휴대전화 번호(이메일)와 비밀번호를 모두 입력해주세요.")

    return Credentials(email_or_phone=email_or_phone, password=password)


def clear_terminal() -> None:
    """Clear the terminal; a no-op when output is redirected."""
    console.clear()


def sanitize_csv_cell(value) -> str:
    """Sanitize a cell value to prevent CSV injection attacks.

    Excel and other spreadsheet apps can execute formulas if a cell starts
    with certain characters. Such values get a leading single quote, except
    phone numbers, which are kept verbatim.
    """
    if not isinstance(value, str):
        return value
    if _PHONE_LIKE_RE.match(value):
        return value
    dangerous_chars = ('=', '+', '-', '@', '\t', '\r')
    if value.startswith(dangerous_chars):
        return "'" + value
    return value


def companies_to_dataframe(details: list) -> pd.DataFrame:
    """Build the CSV frame; columns follow the first record's key order."""
    records = [d.to_dict() if isinstance(d, CompanyDetail) else dict(d) for d in details]

    if records:
        columns = list(records[0].keys())
    else:
        columns = [f.name for f in fields(CompanyDetail) if f.name != "link"]

    df = pd.DataFrame(records, columns=columns)
    # Every column, whatever its dtype (object or StringDtype depending on the pandas version)
    for col in df.columns:
        df[col] = df[col].map(sanitize_csv_cell)
    return df


def save_companies_csv(details: list, output_path) -> Path:
    """Write company details to CSV, overwriting any existing file.

    Args:
        details: CompanyDetail objects (or plain dicts)
        output_path: Destination file

    Returns:
        Path to the written file
    """
    output_path = Path(output_path)
    if output_path.parent != Path("."):
        output_path.parent.mkdir(parents=True, exist_ok=True)

    df = companies_to_dataframe(details)
    df.to_csv(output_path, index=False, encoding="utf-8-sig")
    return output_path


def export_scrape_errors(
    scrape_errors: list[ScrapeError],
    output_dir: Path,
    run_id: str,
) -> Path | None:
    """Export scrape errors to JSON for later review.

    Returns:
        Path to the created file, or None if no errors
    """
    if not scrape_errors:
        return None

    error_summary = {}
    for err in scrape_errors:
        error_summary[err.error_type] = error_summary.get(err.error_type, 0) + 1

    export_data = {
        "metadata": {
            "created": datetime.now().isoformat(),
            "run_id": run_id,
            "total_errors": len(scrape_errors),
            "error_summary": error_summary
        },
        "errors": [err.to_dict() for err in scrape_errors]
    }

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    filepath = output_dir / f"scrape_errors_{run_id}.json"
    with open(filepath, 'w', encoding='utf-8') as f:
        json.dump(export_data, f, indent=2, ensure_ascii=False)

    return filepath


def export_run_stats(scrape_stats: ScrapeStats, output_dir: Path) -> Path:
    """Export run statistics to JSON."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    filepath = output_dir / f"run_stats_{scrape_stats.run_id}.json"
    with open(filepath, 'w', encoding='utf-8') as f:
        json.dump(scrape_stats.to_dict(), f, indent=2)

    return filepath


def main() -> int:
    clear_terminal()
    console.print(LOGO, style="bright_green", markup=False, highlight=False)

    try:
        config = load_scraper_config()
        credentials = get_credentials()
    except (ValueError, TypeError, OSError) as e:
        console.print(f"\n에러 메시지: {e}", style="red", markup=False)
        return 1

    try:
        details, errors, stats = run_browser_scraper(credentials, config)
    except AuthenticationError as e:
        console.print(f"\n에러 메시지: {e}", style="red", markup=False)
        return 1

    clear_terminal()
    console.print(
        f"\n\n✅ 작업이 완료되었습니다. 총 {stats.pages_scraped}개의 페이지에서 {len(details)}개의 회사 정보를 수집했습니다.",
        style="green",
        markup=False,
    )

    output_file = save_companies_csv(details, config["output_file"])
    console.print(f"\n✅ CSV 파일로 저장되었습니다. ({output_file})", style="green", markup=False)

    error_dir = Path(config["error_dir"])
    errors_path = export_scrape_errors(errors, error_dir, stats.run_id)
    if errors_path:
        console.print(f"[RocketPunch] {len(errors)}개의 오류 내역을 저장했습니다: {errors_path}", style="yellow", markup=False)

    stats_path = export_run_stats(stats, error_dir)
    console.print(f"[RocketPunch] 실행 통계를 저장했습니다: {stats_path}", style="bright_black", markup=False)

    return 0


def run() -> None:
    """Console script entry point."""
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        console.print("\n[RocketPunch] 사용자에 의해 중단되었습니다.", style="yellow", markup=False)
        sys.exit(130)
    except Exception as e:
        console.print(
            f"의도치 않게 프로그램이 종료되었습니다 (개발자에게 에러를 보내주세요.): {e}",
            style="red",
            markup=False,
        )
        sys.exit(1)


if __name__ == "__main__":
    run()
