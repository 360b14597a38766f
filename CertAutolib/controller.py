"""
This module defines the ``Controller`` class, which serves as the central
orchestrator of CertAutolib's certificate requests.

It bridges the CLI (View) or other callers and the underlying Model
components (store, submitter, poller, guard and writer). For every request
the controller runs the same sequence of steps and stops at the first
error:

validate -> already requested? -> prepare store -> submit (or resume) ->
await issuance -> materialize -> mark requested

Nothing is marked as requested unless the certificate was issued and, for
the file store, written to its final location.
"""


import json
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from schema import Schema, Optional, SchemaError
from typing import Union

from CertAutolib import logger, schema_poll
from CertAutolib.enums import RequestOutcome, RequestStatus, StoreKind
from CertAutolib.exceptions import CertAutolibException, \
    CertAutolibMaterialError, CertAutolibWrongConfig, PollFailed, \
    PollTimeout, SubmissionError
from CertAutolib.models.guard import IdempotencyGuard
from CertAutolib.models.poller import CompletionPoller
from CertAutolib.models.request import CertificateRequestSpec, RequestRecord
from CertAutolib.models.store import BaseStore, prepare
from CertAutolib.models.submitter import RequestSubmitter, RequestHandle
from CertAutolib.models.writer import materialize_all
from CertAutolib.utils import check_ipa_client


class Controller:
    """
    The ``Controller`` class runs certificate requests described by
    ``CertificateRequestSpec`` objects or by the ``requests`` section of the
    configuration file. Requests for different principals are independent
    and can be processed concurrently with ``run_many``.
    """
    lib_conf: dict = None
    _lib_conf_path: Path = None

    @property
    def conf_path(self):
        """
        Returns the absolute path to the configuration file loaded by the
        Controller.

        :return: A ``pathlib.Path`` object representing the absolute path of
                 the loaded configuration file.
        :rtype: pathlib.Path
        """
        return self._lib_conf_path

    def __init__(self, config: Union[Path, str] = None, strict: bool = False,
                 submitter: RequestSubmitter = None,
                 poller: CompletionPoller = None):
        """
        Initializes the Controller, parsing and validating the configuration
        file and checking that the IPA client is configured.

        :param config: Path to the JSON configuration file
        :type config: pathlib.Path or str, optional
        :param strict: If ``True``, missing IPA client configuration is an
                       error, otherwise only a warning
        :type strict: bool
        :param submitter: Submitter used for the requests. Created from the
                          configuration if not set.
        :type submitter: CertAutolib.models.submitter.RequestSubmitter
        :param poller: Poller used for the requests. Created from the
                       configuration if not set.
        :type poller: CertAutolib.models.poller.CompletionPoller
        :raises CertAutolibWrongConfig: If the configuration is not valid
        """
        tmp_conf = {}
        if config:
            self._lib_conf_path = config.absolute() \
                if isinstance(config, Path) else Path(config).absolute()
            with self._lib_conf_path.open("r") as f:
                try:
                    tmp_conf = json.load(f)
                except ValueError as e:
                    raise CertAutolibWrongConfig(
                        f"Configuration file {self._lib_conf_path} is not "
                        f"valid JSON: {e}")
                if tmp_conf is None:
                    raise CertAutolibWrongConfig(
                        "Data are not loaded correctly.")
        self.lib_conf = self._validate_configuration(tmp_conf)
        self.poll_conf = self.lib_conf["poll"]
        self.requests = self.lib_conf["requests"]

        self.submitter = submitter or RequestSubmitter(
            timeout=self.poll_conf["timeout"])
        self.poller = poller or CompletionPoller(
            timeout=self.poll_conf["timeout"])
        check_ipa_client(strict)

    @staticmethod
    def _validate_configuration(conf: dict) -> dict:
        """
        Validates the schema of the configuration. Single request entries
        are validated when they are run, so one broken entry does not stop
        the other requests.

        :param conf: Loaded configuration
        :type conf: dict
        :return: Validated configuration with defaults filled in
        :rtype: dict
        :raises CertAutolibWrongConfig: If the configuration does not conform
                                        to the schema
        """
        schema = Schema({Optional("poll", default={}): dict,
                         Optional("requests", default=[]): [dict]})
        try:
            conf = schema.validate(conf)
            conf["poll"] = schema_poll.validate(conf["poll"])
        except SchemaError as e:
            raise CertAutolibWrongConfig(f"Configuration is not valid: {e}")
        return conf

    def guard(self, spec: CertificateRequestSpec) -> IdempotencyGuard:
        return IdempotencyGuard.for_spec(
            spec, stale_after=self.poll_conf["stale_after"])

    def get_spec(self, principal: str) -> CertificateRequestSpec:
        """
        Finds the request of the principal in the configuration file.

        :param principal: Principal of the request
        :type principal: str
        :return: Request specification
        :rtype: CertAutolib.models.request.CertificateRequestSpec
        :raises CertAutolibWrongConfig: If no request for the principal is
                                        configured
        """
        for entry in self.requests:
            names = {entry.get("principal")}
            if entry.get("hostname"):
                names.add(f"{entry.get('principal')}/{entry['hostname']}")
            if principal in names:
                return CertificateRequestSpec.from_dict(entry)
        raise CertAutolibWrongConfig(f"Request for {principal} is not "
                                     f"present in the configuration file")

    def run(self, spec: Union[CertificateRequestSpec, dict]) \
            -> RequestOutcome:
        """
        Runs the whole lifecycle of one certificate request.

        :param spec: Request specification or configuration entry
        :type spec: CertAutolib.models.request.CertificateRequestSpec or dict
        :return: ``RequestOutcome.SUCCESS`` if the certificate was issued in
                 this run, ``RequestOutcome.ALREADY_SATISFIED`` if it was
                 requested before
        :rtype: CertAutolib.enums.RequestOutcome
        :raises InvalidSpec: If the specification is not valid
        :raises UnsupportedStoreKind: If the store kind is unknown
        :raises StoreUnavailable: If the store precondition is violated
        :raises SubmissionError: If the request is rejected
        :raises PollTimeout: If the certificate is not issued in time; the
                             next run resumes polling
        :raises PollFailed: If the request failed
        """
        if isinstance(spec, dict):
            spec = CertificateRequestSpec.from_dict(spec)
        guard = self.guard(spec)
        if guard.already_requested(spec.principal):
            logger.info(f"Certificate for {spec.principal} was already "
                        f"requested")
            return RequestOutcome.ALREADY_SATISFIED

        store = prepare(spec)
        record = guard.begin(spec.principal)
        if record is None and guard.already_requested(spec.principal):
            # Another run finished the request after the first check
            guard.clear_pending(spec.principal)
            return RequestOutcome.ALREADY_SATISFIED
        if record is None:
            handle = self._submit(spec, store, guard)
        elif record.status == RequestStatus.polling:
            logger.info(f"Resuming request of {spec.principal} "
                        f"(id {record.request_id})")
            handle = RequestHandle(spec, store, record.request_id)
        else:
            raise PollTimeout(f"Request for {spec.principal} is being "
                              f"submitted by another run")

        try:
            material = self.poller.await_issuance(
                handle, self.poll_conf["max_attempts"],
                self.poll_conf["base_delay"])
        except PollFailed:
            self._abandon(handle, guard)
            raise
        return self._complete(handle, guard, material)

    def _submit(self, spec: CertificateRequestSpec, store: BaseStore,
                guard: IdempotencyGuard) -> RequestHandle:
        try:
            handle = self.submitter.submit(spec, store)
        except SubmissionError:
            guard.clear_pending(spec.principal)
            raise
        guard.update_pending(RequestRecord(spec.principal,
                                           RequestStatus.polling,
                                           request_id=handle.request_id))
        return handle

    def _stop_tracking(self, handle: RequestHandle):
        try:
            self.submitter.stop_tracking(handle)
        except CertAutolibException as e:
            logger.warning(f"Can't stop tracking request of "
                           f"{handle.spec.principal}: {e}")

    def _abandon(self, handle: RequestHandle, guard: IdempotencyGuard):
        """
        Cleans up after a failed request, so the next run submits it again.
        The pending record is kept with the failed status for ``status``.
        """
        self._stop_tracking(handle)
        guard.fail_pending(handle.spec.principal, handle.request_id)
        handle.store.clear_staging()

    def _complete(self, handle: RequestHandle, guard: IdempotencyGuard,
                  material) -> RequestOutcome:
        """
        Puts the issued material in place and only then sets the semaphore.
        Until the semaphore exists the pending record is kept, so a run
        interrupted between the two steps is finished by the next run.
        """
        spec = handle.spec
        try:
            if guard.already_requested(spec.principal):
                return RequestOutcome.ALREADY_SATISFIED
            if spec.store_kind == StoreKind.file:
                materialize_all(material, spec.key, spec.cert)
        finally:
            if material is not None:
                material.discard()
        if not guard.mark_requested(spec.principal, handle.request_id):
            return RequestOutcome.ALREADY_SATISFIED
        guard.clear_pending(spec.principal)
        logger.info(f"Certificate for {spec.principal} is ready")
        return RequestOutcome.SUCCESS

    def run_many(self, specs: list = None, workers: int = None) -> dict:
        """
        Runs several independent requests concurrently. Errors of single
        requests are logged and reported as their outcome, so one broken
        request does not hide the results of the others.

        :param specs: Request specifications or configuration entries.
                      Defaults to all requests from the configuration file.
        :type specs: list
        :param workers: Number of concurrently processed requests. Defaults
                        to the ``workers`` value of the configuration.
        :type workers: int
        :return: Mapping of principal to its outcome
        :rtype: dict
        """
        specs = self.requests if specs is None else specs
        workers = workers or self.poll_conf["workers"]
        results = {}
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {pool.submit(self.run, spec): self._label(spec, i)
                       for i, spec in enumerate(specs)}
            for future, label in futures.items():
                try:
                    results[label] = future.result()
                except CertAutolibException as e:
                    logger.error(f"Request {label}: {e}")
                    results[label] = e.outcome
                except Exception as e:
                    logger.exception(f"Request {label} failed unexpectedly: "
                                     f"{e}")
                    results[label] = RequestOutcome.ERROR
        return results

    @staticmethod
    def _label(spec, index: int) -> str:
        if isinstance(spec, CertificateRequestSpec):
            return spec.principal
        if isinstance(spec, dict) and spec.get("principal"):
            return str(spec["principal"])
        return f"request #{index}"

    def status(self, spec: CertificateRequestSpec):
        """
        Returns the stored record of the request.

        :return: Semaphore record if the certificate was issued, otherwise
                 the pending record or ``None`` if nothing was requested
        :rtype: CertAutolib.models.request.RequestRecord or None
        """
        guard = self.guard(spec)
        return guard.record(spec.principal) or guard.pending(spec.principal)

    def forget(self, spec: CertificateRequestSpec):
        """
        Removes the semaphore and the pending record of the request and
        stops its tracking by certmonger, so the next run submits it again.
        Issued key and certificate files are not touched.
        """
        guard = self.guard(spec)
        store = BaseStore.factory(spec)
        try:
            record = self.status(spec)
            tracked = record is not None
            request_id = record.request_id if tracked else None
        except CertAutolibException as e:
            logger.warning(f"{e}. Stopping tracking by location")
            tracked, request_id = True, None
        if tracked:
            self._stop_tracking(RequestHandle(spec, store, request_id))
        guard.unmark(spec.principal)
        guard.clear_pending(spec.principal)
        store.clear_staging()
        logger.info(f"Request of {spec.principal} is forgotten")

    def refresh(self, spec: CertificateRequestSpec) -> RequestOutcome:
        """
        Copies the key and certificate kept by certmonger in the staging
        directory to the final paths. Certmonger renews the staged pair, so
        this is meant to run as its post-save command. The NSS store is
        updated by certmonger itself.

        :param spec: Request specification
        :type spec: CertAutolib.models.request.CertificateRequestSpec
        :return: ``RequestOutcome.SUCCESS``
        :rtype: CertAutolib.enums.RequestOutcome
        :raises CertAutolibException: If the certificate was not requested
        :raises CertAutolibMaterialError: If the staged material is missing
                                          or can't be written
        """
        if not self.guard(spec).already_requested(spec.principal):
            raise CertAutolibException(f"Certificate for {spec.principal} "
                                       f"was not requested yet")
        if spec.store_kind != StoreKind.file:
            return RequestOutcome.SUCCESS
        material = BaseStore.factory(spec).read_material()
        if material is None:
            raise CertAutolibMaterialError(f"Staged key and certificate of "
                                           f"{spec.principal} are missing")
        try:
            materialize_all(material, spec.key, spec.cert)
        finally:
            material.discard()
        logger.info(f"Certificate for {spec.principal} is refreshed")
        return RequestOutcome.SUCCESS
