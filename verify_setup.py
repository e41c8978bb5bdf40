"""
Setup verification script for the Newsletter Wizard backend.
Checks dependencies, configuration and backing services before first run.
"""
import asyncio
import os
import sys
from typing import Callable, List, Tuple

# Color codes for terminal output
GREEN = "\033[92m"
RED = "\033[91m"
YELLOW = "\033[93m"
BLUE = "\033[94m"
RESET = "\033[0m"

REQUIRED_PACKAGES = [
    "fastapi",
    "uvicorn",
    "sqlalchemy",
    "asyncpg",
    "pgvector",
    "httpx",
    "aiofiles",
    "bs4",
    "fitz",
    "docx",
    "numpy",
]


def print_status(message: str, ok: bool, warn_only: bool = False):
    """Print colored status message."""
    if ok:
        symbol = f"{GREEN}✓{RESET}"
    elif warn_only:
        symbol = f"{YELLOW}!{RESET}"
    else:
        symbol = f"{RED}✗{RESET}"
    print(f"{symbol} {message}")


async def check_python_version() -> bool:
    version = sys.version_info
    ok = version >= (3, 11)
    print_status(f"Python version {version.major}.{version.minor}.{version.micro} (requires 3.11+)", ok)
    return ok


async def check_dependencies() -> bool:
    missing = []
    for package in REQUIRED_PACKAGES:
        try:
            __import__(package)
        except ImportError:
            missing.append(package)
    for package in missing:
        print_status(f"Package '{package}' missing", False)
    if not missing:
        print_status(f"All {len(REQUIRED_PACKAGES)} required packages installed", True)
    return not missing


async def check_env_file() -> bool:
    exists = os.path.exists(".env")
    print_status(".env file exists" if exists else ".env file missing (settings fall back to defaults)", exists)
    return exists


async def check_upload_dir() -> bool:
    from app.config import settings

    exists = os.path.isdir(settings.UPLOAD_DIR)
    print_status(
        f"Upload directory {settings.UPLOAD_DIR} "
        + ("exists" if exists else "missing (created on startup)"),
        exists,
        warn_only=True,
    )
    return True


async def check_ai_providers() -> bool:
    """At least one model key is needed for embeddings or AI generation."""
    from app.config import settings

    has_openai = bool(settings.OPENAI_API_KEY)
    has_anthropic = bool(settings.ANTHROPIC_API_KEY)
    print_status(f"OpenAI key (embeddings, fallback generation): {'set' if has_openai else 'not set'}", has_openai, True)
    print_status(f"Anthropic key (primary generation): {'set' if has_anthropic else 'not set'}", has_anthropic, True)
    if not (has_openai or has_anthropic):
        print(f"  {YELLOW}Search falls back to keyword matching and generation to templates{RESET}")
    return True


async def check_postgres() -> bool:
    """Connect with the configured DATABASE_URL and look for pgvector."""
    from app.config import settings

    url = settings.DATABASE_URL
    if not url.startswith("postgresql"):
        print_status(f"Database is not PostgreSQL ({url.split(':')[0]}); vector search runs in memory", False, True)
        return True

    try:
        import asyncpg

        conn = await asyncpg.connect(url.replace("postgresql+asyncpg://", "postgresql://"), timeout=5)
        try:
            result = await conn.fetchval("SELECT COUNT(*) FROM pg_extension WHERE extname = 'vector'")
        finally:
            await conn.close()
    except Exception as e:
        print_status(f"PostgreSQL connection failed: {e}", False)
        return False

    print_status("PostgreSQL connection successful", True)
    print_status(f"pgvector extension: {'installed' if result > 0 else 'missing'}", result > 0)
    return result > 0


async def main():
    """Run all verification checks."""
    print(f"\n{BLUE}{'=' * 60}{RESET}")
    print(f"{BLUE}Newsletter Wizard Backend - Setup Verification{RESET}")
    print(f"{BLUE}{'=' * 60}{RESET}\n")

    checks: List[Tuple[str, Callable]] = [
        ("Python Version", check_python_version),
        ("Dependencies", check_dependencies),
        ("Environment File", check_env_file),
        ("Upload Directory", check_upload_dir),
        ("AI Providers", check_ai_providers),
        ("PostgreSQL + pgvector", check_postgres),
    ]

    results = []
    for check_name, check_func in checks:
        print(f"\n{BLUE}Checking {check_name}...{RESET}")
        try:
            results.append(await check_func())
        except Exception as e:
            print_status(f"Error during check: {e}", False)
            results.append(False)

    print(f"\n{BLUE}{'=' * 60}{RESET}")
    passed = sum(results)
    total = len(results)

    if passed == total:
        print(f"{GREEN}✓ All checks passed! ({passed}/{total}){RESET}")
        print(f"\n{GREEN}Apply migrations and start the API:{RESET}")
        print("  alembic upgrade head")
        print("  uvicorn app.main:app --reload")
    else:
        print(f"{RED}✗ Some checks failed ({passed}/{total} passed){RESET}")
        print(f"\n{YELLOW}Please fix the issues above before running the backend.{RESET}")
        sys.exit(1)

    print(f"{BLUE}{'=' * 60}{RESET}\n")


if __name__ == "__main__":
    asyncio.run(main())
