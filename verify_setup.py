"""
Setup verification script for the Casebook backend.
Checks the interpreter, installed packages, configuration, database and blob store.
"""
import asyncio
import importlib
import os
import sys
from typing import Callable, List, Tuple

# Color codes for terminal output
GREEN = "\033[92m"
RED = "\033[91m"
YELLOW = "\033[93m"
BLUE = "\033[94m"
RESET = "\033[0m"


def print_status(message: str, status: bool):
    """Print colored status message."""
    symbol = f"{GREEN}✓{RESET}" if status else f"{RED}✗{RESET}"
    print(f"{symbol} {message}")


async def check_python_version() -> bool:
    """Check Python version is 3.10+."""
    version = sys.version_info
    ok = version >= (3, 10)
    suffix = "" if ok else " (requires 3.10+)"
    print_status(f"Python version: {version.major}.{version.minor}.{version.micro}{suffix}", ok)
    return ok


async def check_dependencies() -> bool:
    """Check the runtime packages import (module names, not distribution names)."""
    required_modules = [
        "fastapi",
        "uvicorn",
        "multipart",
        "pydantic_settings",
        "sqlalchemy",
        "asyncpg",
        "aiosqlite",
        "alembic",
        "aiofiles",
        "boto3",
        "docx",
        "PIL",
    ]

    all_installed = True
    for module in required_modules:
        try:
            importlib.import_module(module)
            print_status(f"Module '{module}' installed", True)
        except ImportError:
            print_status(f"Module '{module}' missing", False)
            all_installed = False

    return all_installed


async def check_env_file() -> bool:
    """Check if .env file exists. Optional: every setting has a default."""
    exists = os.path.exists(".env")
    print_status(".env file exists" if exists else ".env file missing (defaults will be used)", exists)
    return True


async def check_database() -> bool:
    """Connect with the configured DATABASE_URL and create tables."""
    from casebook.config import settings
    from casebook.database import close_db, init_db

    try:
        await init_db()
        print_status(f"Database reachable ({settings.DATABASE_URL.split('://', 1)[0]})", True)
        return True
    except Exception as e:
        print_status(f"Database connection failed: {e}", False)
        print(f"  {YELLOW}Check DATABASE_URL in .env{RESET}")
        return False
    finally:
        await close_db()


async def check_blob_store() -> bool:
    """List the label prefix on the configured blob backend."""
    from casebook.config import settings
    from casebook.services.blob_store import build_blob_store
    from casebook.services.labels import LabelService

    store = build_blob_store(settings)
    ok = await LabelService(store).is_available()
    print_status(f"Blob store backend '{settings.BLOB_BACKEND}' reachable", ok)
    if not ok and settings.BLOB_BACKEND == "s3":
        print(f"  {YELLOW}Check S3_BUCKET_NAME, AWS_REGION and AWS credentials{RESET}")
    return ok


async def main():
    """Run all verification checks."""
    print(f"\n{BLUE}{'='*60}{RESET}")
    print(f"{BLUE}Casebook Backend - Setup Verification{RESET}")
    print(f"{BLUE}{'='*60}{RESET}\n")

    checks: List[Tuple[str, Callable]] = [
        ("Python Version", check_python_version),
        ("Dependencies", check_dependencies),
        ("Environment File", check_env_file),
        ("Database", check_database),
        ("Blob Store", check_blob_store),
    ]

    results = []

    for check_name, check_func in checks:
        print(f"\n{BLUE}Checking {check_name}...{RESET}")
        try:
            result = await check_func()
            results.append(result)
        except Exception as e:
            print_status(f"Error during check: {str(e)}", False)
            results.append(False)

    # Summary
    print(f"\n{BLUE}{'='*60}{RESET}")
    passed = sum(results)
    total = len(results)

    if passed == total:
        print(f"{GREEN}✓ All checks passed! ({passed}/{total}){RESET}")
        print(f"\n{GREEN}You're ready to run the backend:{RESET}")
        print("  uvicorn casebook.main:app --reload")
    else:
        print(f"{RED}✗ Some checks failed ({passed}/{total} passed){RESET}")
        print(f"\n{YELLOW}Please fix the issues above before running the backend.{RESET}")
        sys.exit(1)

    print(f"{BLUE}{'='*60}{RESET}\n")


if __name__ == "__main__":
    asyncio.run(main())
