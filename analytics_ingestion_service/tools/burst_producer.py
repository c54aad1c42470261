"""
Produces a burst of synthetic analytics events to the ingestion topic.

Usage:
    python -m analytics_ingestion_service.tools.burst_producer --count 1000 --batch-size 100
"""
import argparse
import asyncio
import datetime
import logging
import random
import time
import uuid

from analytics_ingestion_service.app.config import settings
from analytics_ingestion_service.infrastructure.kafka.producer import EventProducer
from analytics_ingestion_service.infrastructure.kafka.schemas import EventMetadata, RawEvent

logger = logging.getLogger(__name__)

EVENT_TYPES = [
    "page_view",
    "button_click",
    "form_submit",
    "search",
    "purchase",
    "signup",
    "login",
    "logout",
]

SOURCES = ["web", "mobile-ios", "mobile-android", "api"]


def generate_user_id(source: str):
    # API clients identify users by UUID, the apps by numeric id.
    if source == "api":
        return str(uuid.uuid4())
    return random.randint(0, 999999)


def generate_event() -> RawEvent:
    event_type = random.choice(EVENT_TYPES)
    source = random.choice(SOURCES)
    return RawEvent(
        event_id=str(uuid.uuid4()),
        user_id=generate_user_id(source),
        session_id=str(uuid.uuid4()),
        event_type=event_type,
        timestamp=datetime.datetime.now(datetime.timezone.utc).isoformat(),
        properties={
            "url": f"https://example.com/{event_type}",
            "referrer": "https://google.com" if random.random() > 0.5 else None,
            "duration": random.randint(0, 9999),
        },
        metadata=EventMetadata(source=source, version="1.0.0"),
    )


async def send_burst(producer: EventProducer, topic: str, count: int, batch_size: int) -> int:
    await producer.start_polling()
    total_sent = 0
    start_time = time.monotonic()
    try:
        for batch_start in range(0, count, batch_size):
            batch_count = min(batch_size, count - batch_start)
            for _ in range(batch_count):
                event = generate_event()
                producer.produce_event(topic, event)
            total_sent += batch_count
            logger.info(f"Sent batch {batch_start // batch_size + 1}: {total_sent}/{count} events")
            await asyncio.sleep(0)
        producer.flush()
    finally:
        await producer.stop_polling()

    elapsed = max(time.monotonic() - start_time, 1e-6)
    logger.info(
        f"Burst complete: {total_sent} events in {elapsed * 1000:.0f}ms "
        f"({total_sent / elapsed:.0f} events/second, {producer.failed} delivery failures)"
    )
    return total_sent


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="Produce synthetic analytics events to Kafka.")
    parser.add_argument("--count", type=int, default=1000, help="Number of events to produce")
    parser.add_argument("--batch-size", type=int, default=100, help="Events per progress batch")
    parser.add_argument("--topic", default=settings.KAFKA_TOPIC_NAME)
    parser.add_argument("--bootstrap-servers", default=settings.KAFKA_BOOTSTRAP_SERVERS)
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    producer = EventProducer(bootstrap_servers=args.bootstrap_servers, client_id="burst-producer")
    asyncio.run(send_burst(producer, args.topic, args.count, args.batch_size))


if __name__ == "__main__":
    main()
