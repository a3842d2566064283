# deployment_engine/api/container.py
from functools import lru_cache

from deployment_engine.container import Container, build_container
from deployment_engine.infrastructure.settings import load_settings


@lru_cache(maxsize=1)
def get_container() -> Container:
    return build_container(load_settings())


def get_monitor():
    return get_container().monitor


def get_deployment():
    return get_container().deployment
