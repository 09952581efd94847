# assetflow/pipeline.py
"""
AssetPipeline: koppelt alle componenten en biedt de client-operaties aan.

    client -> QuotaGuard -> CredentialIssuer -> (upload naar blob store)
           -> CompletionConfirmer -> Dispatcher -> Scan/Derivative workers
           -> AccessUrlIssuer
"""
from __future__ import annotations

import random
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import sessionmaker

from assetflow.collaborators import Authorizer, Catalog, HttpCatalog, Identity, InMemoryCatalog, OwnerOrAdminAuthorizer
from assetflow.config import Settings
from assetflow.db import make_engine, make_session_factory, utcnow
from assetflow.errors import Forbidden
from assetflow.models import Asset, Job, JobKind
from assetflow.scanning import ScanBackend, build_scan_backend
from assetflow.services.access_urls import AccessUrlIssuer
from assetflow.services.assets import AssetFilter, AssetPage, AssetService
from assetflow.services.completion import CompletionConfirmer
from assetflow.services.credential_issuer import CredentialIssuer, UploadTicket
from assetflow.services.dispatcher import Dispatcher
from assetflow.services.janitor import Janitor, SweepReport
from assetflow.services.quota_guard import QuotaGuard
from assetflow.services.state_store import StateStore
from assetflow.storage import BlobStore, ReadCredential, build_blob_store
from assetflow.workers.derivatives import DerivativeWorker
from assetflow.workers.runner import JobRunner
from assetflow.workers.scan import ScanWorker


class AssetPipeline:
    def __init__(
        self,
        settings: Settings,
        session_factory: sessionmaker,
        store: BlobStore,
        scanner: ScanBackend,
        catalog: Catalog,
        authorizer: Optional[Authorizer] = None,
        clock: Callable[[], datetime] = utcnow,
        rng: Optional[random.Random] = None,
    ):
        self.settings = settings
        self.session_factory = session_factory
        self.store = store
        self.catalog = catalog
        self.authorizer = authorizer or OwnerOrAdminAuthorizer()
        self.clock = clock

        self.quota = QuotaGuard(settings, clock=clock)
        self.state = StateStore(session_factory, clock=clock)
        self.dispatcher = Dispatcher(session_factory, settings, clock=clock, rng=rng)
        self.issuer = CredentialIssuer(session_factory, settings, self.quota, store, catalog, clock=clock)
        self.confirmer = CompletionConfirmer(session_factory, settings, self.state, self.dispatcher, store, clock=clock)
        self.assets = AssetService(session_factory, self.state, self.quota, store, catalog, self.authorizer, clock=clock)
        self.access = AccessUrlIssuer(settings, self.state, store, catalog, self.authorizer)
        self.janitor = Janitor(session_factory, settings, self.state, self.quota, store, clock=clock)

        self.scan_worker = ScanWorker(self.state, store, scanner, settings, clock=clock)
        self.derivative_worker = DerivativeWorker(self.state, store, settings, clock=clock)
        self.runner = JobRunner(
            self.dispatcher,
            {JobKind.SCAN: self.scan_worker, JobKind.DERIVATIVES: self.derivative_worker},
            settings,
        )

    # ---- client operaties ----
    def initiate_upload(
        self,
        identity: Identity,
        file_name: str,
        declared_size: int,
        declared_type: str,
        group_ref: Optional[str] = None,
    ) -> UploadTicket:
        return self.issuer.initiate(identity, file_name, declared_size, declared_type, group_ref=group_ref)

    def confirm_upload(
        self,
        identity: Identity,
        asset_id: str,
        title: Optional[str],
        description: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Asset:
        return self.confirmer.confirm(identity, asset_id, title, description=description, metadata=metadata)

    def get_asset(self, asset_id: str, requester: Identity) -> Asset:
        return self.assets.get(asset_id, requester)

    def list_assets(self, requester: Identity, filters: AssetFilter, page: int = 1, page_size: int = 20) -> AssetPage:
        return self.assets.list(requester, filters, page=page, page_size=page_size)

    def download_url(self, asset_id: str, requester: Identity) -> ReadCredential:
        return self.access.download_url(asset_id, requester)

    def preview_url(self, asset_id: str, size: str, requester: Identity) -> ReadCredential:
        return self.access.preview_url(asset_id, size, requester)

    def delete_asset(self, asset_id: str, requester: Identity) -> Asset:
        return self.assets.delete(asset_id, requester)

    def archive_asset(self, asset_id: str, requester: Identity) -> Asset:
        return self.assets.archive(asset_id, requester)

    def quota_usage(self, identity: Identity) -> Dict[str, Any]:
        with self.session_factory() as db:
            return self.quota.usage(db, identity.id)

    # ---- achtergrond / operator ----
    def process_jobs(self, kind: JobKind, max_jobs: int = 50) -> int:
        return self.runner.drain(kind, max_jobs=max_jobs)

    def run_until_idle(self, max_rounds: int = 100) -> int:
        """Drain every job kind until nothing is leasable (tests, CLI)."""
        total = 0
        for _ in range(max_rounds):
            handled = sum(self.runner.drain(kind) for kind in JobKind)
            total += handled
            if not handled:
                break
        return total

    def sweep(self, dry_run: bool = False) -> SweepReport:
        return self.janitor.sweep(dry_run=dry_run)

    def dead_jobs(self, requester: Identity, kind: Optional[JobKind] = None) -> List[Job]:
        if not requester.is_admin:
            raise Forbidden("Admin role required")
        return self.dispatcher.dead_jobs(kind)

    def retry_job(self, job_id: int, requester: Identity) -> Job:
        if not requester.is_admin:
            raise Forbidden("Admin role required")
        return self.dispatcher.retry_dead(job_id)


def build_catalog(settings: Settings) -> Catalog:
    if settings.catalog_url:
        return HttpCatalog(settings.catalog_url)
    return InMemoryCatalog()


def build_pipeline(settings: Settings, engine=None) -> AssetPipeline:
    engine = engine or make_engine(settings.database_url, pool_pre_ping=True)
    return AssetPipeline(
        settings=settings,
        session_factory=make_session_factory(engine),
        store=build_blob_store(settings),
        scanner=build_scan_backend(settings),
        catalog=build_catalog(settings),
    )
