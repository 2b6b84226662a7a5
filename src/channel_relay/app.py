"""Single application entry point that runs the API, the reconciler and the relay supervisor."""

import logging
import sys
import threading

from .config import config
from .fetcher import get_fetcher
from .models import init_db
from .reconciler import ScheduleReconciler
from .service import ChannelService
from .store import ChannelStore
from .supervisor import RelaySupervisor
from .web import app, socketio, set_service

logger = logging.getLogger(__name__)

def setup_logging():
    """Setup logging configuration."""
    config.ensure_directories()

    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(config.LOG_FILE),
            logging.StreamHandler(sys.stdout)
        ]
    )

class RelayApp:
    """Main application: web API in the main thread, control loops in the background."""

    def __init__(self):
        self.store = None
        self.supervisor = None
        self.reconciler = None
        self.service = None
        self.stop_event = threading.Event()
        self.threads = []

    def setup(self):
        """Build components and clear state left over from a previous run."""
        setup_logging()
        logger.info("Starting Channel Relay")

        init_db()
        self.store = ChannelStore()
        self.supervisor = RelaySupervisor(self.store)
        self.service = ChannelService(self.store, self.supervisor, get_fetcher())
        self.reconciler = ScheduleReconciler(self.store, self.supervisor)

        # No relay survives a restart, so any is_active flag is stale.
        self.service.reset_stale_state()
        set_service(self.service)

    def start_background_threads(self):
        """Start the relay event dispatcher and the schedule reconciler."""
        for name, target in (
            ("relay-dispatcher", self.supervisor.run_dispatcher),
            ("reconciler", self.reconciler.run),
        ):
            thread = threading.Thread(target=target, args=(self.stop_event,), name=name, daemon=True)
            thread.start()
            self.threads.append(thread)

    def run(self):
        """Run the complete application."""
        try:
            self.setup()
            self.start_background_threads()

            logger.info(f"Starting web server on {config.FLASK_HOST}:{config.FLASK_PORT}")
            socketio.run(
                app,
                host=config.FLASK_HOST,
                port=config.FLASK_PORT,
                debug=config.DEBUG,
                use_reloader=False,
                allow_unsafe_werkzeug=True
            )
        except KeyboardInterrupt:
            logger.info("Channel Relay stopped by user")
        except Exception as e:
            logger.error(f"Channel Relay error: {e}")
            sys.exit(1)
        finally:
            self.cleanup()

    def cleanup(self):
        """Stop background loops and kill every relay."""
        logger.info("Cleaning up Channel Relay")
        self.stop_event.set()
        if self.service:
            self.service.shutdown()

def main():
    """Main entry point."""
    RelayApp().run()

if __name__ == "__main__":
    main()
