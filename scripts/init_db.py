import sys
import os

# Add project root to path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from dispensary import create_app
from dispensary.database import create_all, get_session
from dispensary.models import StockLocation

DEFAULT_LOCATIONS = ('shop', 'facility')


def init_db(location_names=DEFAULT_LOCATIONS):
    app = create_app()
    with app.app_context():
        create_all()
        session = get_session()
        existing = {loc.name for loc in session.query(StockLocation).all()}
        for name in location_names:
            if name in existing:
                print(f"Location '{name}' already exists")
                continue
            session.add(StockLocation(name=name))
            print(f"Created location '{name}'")
        session.commit()


if __name__ == "__main__":
    init_db(tuple(sys.argv[1:]) or DEFAULT_LOCATIONS)
