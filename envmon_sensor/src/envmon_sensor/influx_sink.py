import logging
from datetime import datetime, timezone

from influxdb_client import InfluxDBClient, Point
from influxdb_client.client.write_api import SYNCHRONOUS

from envmon_core.domain.models import CompositeRecord

logger = logging.getLogger(__name__)


def to_point(record: CompositeRecord) -> Point:
    point = Point(record.measurement)
    for key, value in record.tags.items():
        point = point.tag(key, value)
    for key, value in record.point_fields().items():
        point = point.field(key, value)
    return point.time(datetime.fromtimestamp(record.ts, tz=timezone.utc))


class InfluxSink:
    """Writes records to InfluxDB through the v1 compatible API.

    ``user:password`` is passed as the token and the database name as the
    bucket, which works against both InfluxDB 1.8+ and 2.x with DBRP mapping.
    """

    def __init__(
        self,
        *,
        host: str,
        port: int = 8086,
        user: str = "",
        password: str = "",
        database: str,
        timeout_ms: int = 10_000,
    ):
        self.url = f"http://{host}:{port}/"
        self.bucket = database
        self._client = InfluxDBClient(
            url=self.url,
            token=f"{user}:{password}",
            org="-",
            timeout=timeout_ms,
        )
        self._write_api = self._client.write_api(write_options=SYNCHRONOUS)

        logger.info("Initializing InfluxDB sink: url=%s, database=%s", self.url, database)

    def write(self, record: CompositeRecord) -> bool:
        try:
            self._write_api.write(bucket=self.bucket, record=to_point(record))
        except Exception as e:
            logger.error("Write error for %s: %s", record.device_name, e)
            return False
        logger.debug("Wrote %s to %s", record.device_name, self.bucket)
        return True

    def close(self) -> None:
        logger.info("Closing InfluxDB client")
        self._write_api.close()
        self._client.close()
