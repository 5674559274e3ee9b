from flask_wtf import FlaskForm
from wtforms import IntegerField
from wtforms.validators import NumberRange, StopValidation

MAX_GOALS = 99


def whole_number(form, field):
    """Required non-negative whole number; 0 is a valid score"""
    if not field.raw_data or field.raw_data[0] in (None, ""):
        raise StopValidation("This field is required.")
    raw = field.raw_data[0]
    if isinstance(raw, bool) or (isinstance(raw, float) and not raw.is_integer()):
        raise StopValidation("Must be a whole number.")


class MatchResultForm(FlaskForm):
    home_score = IntegerField(
        "Home Score", validators=[whole_number, NumberRange(min=0, max=MAX_GOALS)]
    )
    away_score = IntegerField(
        "Away Score", validators=[whole_number, NumberRange(min=0, max=MAX_GOALS)]
    )


class PredictionForm(FlaskForm):
    match_id = IntegerField("Match", validators=[whole_number, NumberRange(min=1)])
    predicted_home_score = IntegerField(
        "Predicted Home Score",
        validators=[whole_number, NumberRange(min=0, max=MAX_GOALS)],
    )
    predicted_away_score = IntegerField(
        "Predicted Away Score",
        validators=[whole_number, NumberRange(min=0, max=MAX_GOALS)],
    )
