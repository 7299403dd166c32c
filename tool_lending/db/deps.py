from collections.abc import Generator

from fastapi import Request


def get_lending_db(request: Request) -> Generator:
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_rental_engine(request: Request):
    return request.app.state.rental_engine
