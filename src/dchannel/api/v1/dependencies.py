"""Shared API dependencies resolving the engine objects held on ``app.state``."""

from typing import Annotated

from fastapi import Depends, Request

from dchannel.services.directory import DirectoryStore
from dchannel.services.identity import IdentityContext
from dchannel.services.poller import PollerRegistry
from dchannel.services.publisher import FeedPublisher
from dchannel.services.reader import FeedReader
from dchannel.services.storage import NamingService


def get_identity(request: Request) -> IdentityContext:
    return request.app.state.identity


def get_directory(request: Request) -> DirectoryStore:
    return request.app.state.directory


def get_publisher(request: Request) -> FeedPublisher:
    return request.app.state.publisher


def get_reader(request: Request) -> FeedReader:
    return request.app.state.reader


def get_naming(request: Request) -> NamingService:
    return request.app.state.naming


def get_registry(request: Request) -> PollerRegistry:
    return request.app.state.pollers


IdentityDep = Annotated[IdentityContext, Depends(get_identity)]
DirectoryDep = Annotated[DirectoryStore, Depends(get_directory)]
PublisherDep = Annotated[FeedPublisher, Depends(get_publisher)]
ReaderDep = Annotated[FeedReader, Depends(get_reader)]
NamingDep = Annotated[NamingService, Depends(get_naming)]
RegistryDep = Annotated[PollerRegistry, Depends(get_registry)]
