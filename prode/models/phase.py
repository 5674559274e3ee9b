from prode import db
from prode.scoring.rules import PHASE_MULTIPLIERS

# (slug, display name) in tournament order
DEFAULT_PHASES = [
    ("grupos", "Group Stage"),
    ("dieciseisavos", "Round of 32"),
    ("octavos", "Round of 16"),
    ("cuartos", "Quarter-finals"),
    ("semifinales", "Semi-finals"),
    ("tercer-lugar", "Third Place"),
    ("final", "Final"),
]


class Phase(db.Model):
    """Tournament stage; reference data, never mutated by settlement"""

    __tablename__ = "phases"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    slug = db.Column(db.String(50), nullable=False, unique=True, index=True)
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    points_multiplier = db.Column(db.Float, nullable=False, default=1.0)

    matches = db.relationship(
        "Match", backref=db.backref("phase", lazy="joined"), lazy="dynamic"
    )

    __table_args__ = (
        db.CheckConstraint("points_multiplier > 0", name="positive_multiplier"),
    )

    def __repr__(self):
        return f"<Phase {self.slug} x{self.points_multiplier}>"

    @staticmethod
    def get_by_slug(slug):
        return Phase.query.filter_by(slug=slug).first()

    @staticmethod
    def seed_defaults():
        """Create any missing default phases. Returns the number created."""
        created = 0
        for order, (slug, name) in enumerate(DEFAULT_PHASES, start=1):
            if Phase.get_by_slug(slug):
                continue
            db.session.add(
                Phase(
                    name=name,
                    slug=slug,
                    sort_order=order,
                    points_multiplier=PHASE_MULTIPLIERS.get(slug, 1.0),
                )
            )
            created += 1
        return created

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "sort_order": self.sort_order,
            "points_multiplier": self.points_multiplier,
        }
