"""Command line interface for running the API server."""
import logging
import uvicorn

from config import settings_conf

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

def main():
    """Run the API server; the app lifespan starts and stops the background work."""
    uvicorn.run(
        "api:app",
        host=settings_conf['api_host'],
        port=settings_conf['api_port'],
        log_level="info"
    )

if __name__ == "__main__":
    main()
