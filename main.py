"""
Main entry point for the carbon ledger service.

This module loads configuration, prepares the database and reference
emission factors, and starts the FastAPI server.
"""
import sys
from pathlib import Path

# Add project root to Python path for module imports
PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from dotenv import load_dotenv

from core.config import get_settings
from core.db import get_db
from core.emissions import initialize_default_emission_factors
from core.exceptions import ConfigurationError
from core.logger import setup_logger

# Load environment variables from .env file
_env_file = PROJECT_ROOT / ".env"
if _env_file.exists():
    load_dotenv(_env_file)
else:
    print("Warning: .env file not found. Using environment variables or defaults.")

logger = setup_logger(__name__)


def main():
    """Main application entry point."""
    try:
        settings = get_settings()

        db = get_db()
        seeded = initialize_default_emission_factors(db)
        logger.info(f"Emission factors: {db.count_emission_factors()} stored ({seeded} seeded now)")

        import uvicorn
        from app.api import app

        logger.info("Starting Carbon Ledger Service")
        logger.info(f"Database: {settings.database_path}")
        if settings.remote_classifier_enabled:
            logger.info(f"Remote classifier model: {settings.openai_model}")
        else:
            logger.info("Remote classifier disabled, keyword rules only")
        if settings.remote_factors_enabled:
            logger.info(f"Remote emission factors: {settings.climatiq_api_url} ({settings.climatiq_region})")
        logger.info(
            f"Classification batches: {settings.classification_batch_size} "
            f"every {settings.classification_batch_delay}s"
        )
        logger.info(f"Log Level: {settings.log_level}")

        logger.info(f"Starting server on {settings.host}:{settings.port}")

        uvicorn.run(
            app,
            host=settings.host,
            port=settings.port,
            log_level=settings.log_level.lower()
        )

    except ConfigurationError as e:
        logger.error(f"Configuration error: {e.message}")
        if e.details:
            logger.error(f"Details: {e.details}")
        sys.exit(1)

    except Exception as e:
        logger.error(f"Failed to start application: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
