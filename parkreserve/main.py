# File: parkreserve/main.py
"""
Main application entry point for the ParkReserve client
Wires configuration, storage, HTTP client, auth, data service and the
real-time channel together (composition root)
"""

from typing import List, Optional
import argparse
import logging
import os
import sys

from .config import AppConfig
from .domain.aggregates import ReservationLedger
from .domain.models import UserRole
from .infrastructure.storage import SQLAlchemyStorage
from .infrastructure.api_client import ApiClient
from .infrastructure.api_services import BackendApi
from .infrastructure.messaging import (
    EventBus, Notifier, RedisMessageQueue, RealtimeChannel,
    SystemMonitorFeed, ReservationUpdateListener
)
from .application.auth_service import AuthService
from .application.data_service import ParkingDataService, RestBackendGateway
from .application.report_service import ReportService


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """Setup application logging configuration"""
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True
    )
    return logging.getLogger(__name__)


class ParkReserveApplication:
    """Main application controller that sets up all components"""

    def __init__(self, config: Optional[AppConfig] = None):
        self.config = config or AppConfig.load()
        self.logger = setup_logging(self.config.log_level, self.config.log_file)
        self.logger.info("Starting ParkReserve client...")

        self.channel: Optional[RealtimeChannel] = None
        self.monitor: Optional[SystemMonitorFeed] = None
        self.reservation_listener: Optional[ReservationUpdateListener] = None

        self.setup_components()

    def setup_components(self):
        """Initialize all application components with dependency injection"""
        try:
            # 1. Client storage (session persistence)
            self.storage = SQLAlchemyStorage(self.config.storage_url)
            self.notifier = Notifier()
            self.event_bus = EventBus()
            self.logger.info("Storage initialized")

            # 2. Ledger cache
            self.ledger = ReservationLedger(max_active_reservations=self.config.max_active_reservations)

            # 3. Backend access, unless running offline
            if self.config.offline:
                self.api = None
                self.auth = AuthService.offline(self.config.offline_users, self.storage, self.notifier)
                gateway = None
                reportes_api = None
            else:
                client = ApiClient(
                    base_url=self.config.api_base_url,
                    timeout=self.config.timeout,
                    storage=self.storage,
                    on_auth_error=self._on_auth_error
                )
                self.api = BackendApi(client)
                self.auth = AuthService(self.api.auth, self.storage, self.notifier)
                gateway = RestBackendGateway(self.api)
                reportes_api = self.api.reportes
            self.logger.info(f"Auth service initialized ({'offline' if self.config.offline else 'backed'})")

            # 4. Application service
            self.data_service = ParkingDataService(
                ledger=self.ledger,
                gateway=gateway,
                auth=self.auth,
                notifier=self.notifier,
                event_bus=self.event_bus,
                report_service=ReportService(self.ledger, reportes_api),
                config=self.config.service_config()
            )

            # 5. Real-time channel (optional)
            if self.config.realtime_enabled:
                self.channel = RealtimeChannel(RedisMessageQueue(self.config.redis_url))
                self.monitor = SystemMonitorFeed(self.channel)
                self.logger.info("Real-time channel initialized")

        except Exception as e:
            self.logger.error(f"Failed to initialize components: {str(e)}")
            raise

    def _on_auth_error(self):
        self.auth.handle_auth_error()

    def start(self) -> bool:
        """Restore the session, load data and connect the real-time channel"""
        user = self.auth.restore_session()
        if user is None:
            self.logger.info("No stored session, login required")
            return False

        if not self.config.offline and not self.auth.verify_token():
            self.logger.info("Stored session rejected by backend")
            return False

        self.data_service.refresh_data()

        if self.channel is not None and self.channel.connect() == "connected":
            user = self.auth.current_user
            own_updates = user.id if user.role == UserRole.RESERVADOR else None
            self.reservation_listener = ReservationUpdateListener(self.channel, self.notifier, own_updates)

        return True

    def refresh_if_stale(self) -> bool:
        """
        Reload the cache when reservation updates arrived since the last
        call; runs on the caller's thread, never on the channel's
        """
        if self.reservation_listener is None or not self.reservation_listener.consume_stale():
            return False
        self.logger.info("Reservation updates received, refreshing data")
        return self.data_service.refresh_data()

    def summary(self) -> str:
        user = self.auth.current_user
        lines = [
            f"Usuario: {user.name} ({user.role})" if user else "Usuario: sin sesión",
            f"Plazas: {len(self.data_service.parking_spots)}"
            f" ({len(self.data_service.get_available_spots())} disponibles)",
            f"Reservaciones: {len(self.data_service.reservations)}",
        ]
        if self.channel is not None:
            lines.append(f"Tiempo real: {self.channel.status.value}")
        return "\n".join(lines)

    def shutdown(self):
        self.logger.info("Application shutting down...")
        if self.channel is not None:
            self.channel.disconnect()
            self.channel.queue.close()
        self.storage.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="parkreserve", description="ParkReserve client")
    parser.add_argument("--config", help="YAML configuration file")
    parser.add_argument("--offline", action="store_true", help="run without backend")
    parser.add_argument("--login", nargs=2, metavar=("EMAIL", "PASSWORD"), help="start a new session")
    parser.add_argument("--logout", action="store_true", help="close the stored session")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the application"""
    args = build_parser().parse_args(argv)
    try:
        config = AppConfig.load(args.config)
        if args.offline:
            config.offline = True

        app = ParkReserveApplication(config)
        try:
            if args.logout:
                app.auth.restore_session()
                app.auth.logout()
            elif args.login and not app.auth.login(*args.login):
                print(app.notifier.last.description)
                return 1

            if app.start():
                app.refresh_if_stale()
            print(app.summary())
        finally:
            app.shutdown()
    except Exception as e:
        print(f"Fatal error: {str(e)}")
        logging.error(f"Fatal error in main: {str(e)}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
