"""
Startup script for the ENS Sales Bot.

Usage:
    python run.py

Serves the admin API at http://localhost:8000 (docs at /docs)
"""

import os
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

# Change to project directory to ensure .env is loaded correctly
os.chdir(project_root)


def main():
    import uvicorn
    from dotenv import load_dotenv

    load_dotenv()

    print("=" * 50)
    print("ENS SALES BOT")
    print("=" * 50)
    print("Starting server...")
    print("API docs at http://localhost:8000/docs")
    print("=" * 50)

    uvicorn.run(
        "ens_sales_bot.main:app",
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8000")),
        log_level="info"
    )


if __name__ == "__main__":
    main()
