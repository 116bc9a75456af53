"""
Create sample data for local dashboards.

Beacons go through the normalizer and ingestion engine like real traffic,
each stamped with a time spread over the last 30 days.
"""
import random
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from config import get_settings
from database import Database
from services.classifiers import NullGeoClassifier, UserAgentClassifier
from services.ingestion import IngestionService
from services.normalizer import BeaconNormalizer
from utils import utcnow

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Safari/605.1.15",
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_1 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Mobile/15E148 Safari/604.1",
    "Mozilla/5.0 (iPad; CPU OS 16_6 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/16.6 Mobile/15E148 Safari/604.1",
    "Mozilla/5.0 (X11; Ubuntu; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0",
]
REFERRERS = ["https://www.google.com/search?q=analytics", "https://facebook.com/", "https://t.co/abc", "", "https://news.ycombinator.com/"]
UTM_SOURCES = ["newsletter", "twitter", "google", None]
PAGES = [("/", "Home"), ("/about", "About Us"), ("/pricing", "Pricing"), ("/blog", "Blog"), ("/contact", "Contact")]
SCREENS = [(1920, 1080), (1440, 900), (390, 844), (820, 1180)]
LANGUAGES = ["en-US", "en-GB", "de-DE", "fr-FR"]


def build_sample_beacons(visitors: int = 20, seed: int = 42, now: Optional[datetime] = None) -> List[Tuple[datetime, dict]]:
    """Return ``(timestamp, payload)`` pairs in chronological order"""
    rng = random.Random(seed)
    now = now or utcnow()
    beacons = []

    for v in range(visitors):
        visitor_id = f"visitor_{v}"
        user_agent = rng.choice(USER_AGENTS)
        width, height = rng.choice(SCREENS)
        language = rng.choice(LANGUAGES)

        for s in range(rng.randint(1, 3)):
            session_id = f"{visitor_id}_session_{s}"
            started = now - timedelta(days=rng.randint(0, 29), minutes=rng.randint(0, 1439))
            referrer = rng.choice(REFERRERS)
            utm_source = rng.choice(UTM_SOURCES)

            for i in range(rng.randint(1, 5)):
                path, title = rng.choice(PAGES)
                url = f"https://clouddept.io{path}"
                if utm_source:
                    url += f"?utm_source={utm_source}&utm_medium=referral"
                beacons.append((started + timedelta(seconds=i * 30), {
                    "visitorId": visitor_id,
                    "sessionId": session_id,
                    "isNewSession": i == 0,
                    "type": "pageview",
                    "page": {"path": path, "title": title, "referrer": referrer, "url": url},
                    "browser": {"userAgent": user_agent, "language": language},
                    "screen": {"width": width, "height": height}
                }))
            beacons.append((started + timedelta(seconds=600), {
                "visitorId": visitor_id,
                "sessionId": session_id,
                "type": "session_end"
            }))

    beacons.sort(key=lambda b: b[0])
    return beacons


def load_sample_data(db, beacons: List[Tuple[datetime, dict]], ip_address: str = "127.0.0.1") -> int:
    normalizer = BeaconNormalizer(UserAgentClassifier(), NullGeoClassifier())
    for timestamp, payload in beacons:
        IngestionService(db, clock=lambda ts=timestamp: ts).ingest(normalizer.normalize(payload, ip_address))
    return len(beacons)


if __name__ == "__main__":
    database = Database(get_settings().database_url)
    database.create_all()
    with database.session() as db:
        count = load_sample_data(db, build_sample_beacons())
    database.dispose()

    print("=" * 50)
    print(f"✓ Ingested {count} sample beacons")
    print("=" * 50)
