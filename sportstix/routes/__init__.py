from flask import Flask

from . import auth, events, season_passes, tickets, venues


def register_blueprints(app: Flask) -> None:
    for module in (auth, events, tickets, venues, season_passes):
        app.register_blueprint(module.bp)
