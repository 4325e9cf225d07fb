#!/usr/bin/env python3
"""
Nova Banking Entry Point

Starts the FastAPI server with the configured host, port and storage backend.
"""

import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from nova_banking.api import run_server
from nova_banking.config import get_config


if __name__ == "__main__":
    settings = get_config()
    print("🏦 Starting Nova Banking...")
    print(f"💾 Storage: {settings.database_url}")
    print("🔒 Audit trail active" if settings.enable_audit_logging else "🔓 Audit trail disabled")
    print(f"🌐 API available at: http://localhost:{settings.api_port}")
    print(f"📚 Documentation at: http://localhost:{settings.api_port}/docs")
    print()

    try:
        run_server(debug=False)
    except KeyboardInterrupt:
        print("\n👋 Shutting down Nova Banking...")
    except Exception as e:
        print(f"❌ Error starting server: {e}")
        sys.exit(1)
