"""
This module places issued key and certificate material at its final
location. Every file is written to a temporary sibling first, gets its mode
and ownership and is then renamed into place, so the final path either does
not exist or contains the complete content.
"""


import os
import stat
import tempfile
from cryptography import x509
from cryptography.hazmat.primitives import serialization
from pathlib import Path

from CertAutolib import logger
from CertAutolib.exceptions import CertAutolibMaterialError
from CertAutolib.models.request import IssuedMaterial


def write_temp(path: Path, data: bytes, mode: int, owner: int = None,
               group: int = None) -> Path:
    """
    Writes data to a new temporary file next to ``path`` and applies mode
    and ownership to it. The caller is responsible for renaming or removing
    the returned file.

    :return: Path of the temporary file
    :rtype: pathlib.Path
    """
    fd, tmp = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.",
                               suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fchmod(f.fileno(), mode)
            if owner is not None:
                os.fchown(f.fileno(), owner, -1 if group is None else group)
            os.fsync(f.fileno())
    except BaseException:
        os.unlink(tmp)
        raise
    return Path(tmp)


def materialize(path: Path, data: bytes, mode: int, owner: int, group: int):
    """
    Atomically writes ``data`` to ``path`` with given mode and ownership.

    :param path: Final path of the file
    :type path: pathlib.Path
    :param data: Content of the file
    :type data: bytes
    :param mode: Permission bits of the file
    :type mode: int
    :param owner: Numeric owner of the file
    :type owner: int
    :param group: Numeric group of the file
    :type group: int
    :raises CertAutolibMaterialError: If ``data`` is empty
    """
    path = Path(path)
    if not data:
        raise CertAutolibMaterialError(f"Refusing to write empty content to "
                                       f"{path}")
    tmp = write_temp(path, data, mode, owner, group)
    try:
        os.replace(tmp, path)
    except OSError:
        tmp.unlink()
        raise
    logger.debug(f"File {path} is written with mode {oct(mode)}, owner "
                 f"{owner}:{group}")


def _validate_material(material: IssuedMaterial):
    try:
        x509.load_pem_x509_certificate(material.cert_bytes)
    except ValueError as e:
        raise CertAutolibMaterialError(f"Issued certificate is not a valid "
                                       f"PEM certificate: {e}")
    try:
        serialization.load_pem_private_key(material.key_bytes, password=None)
    except (ValueError, TypeError) as e:
        raise CertAutolibMaterialError(f"Issued key is not a valid PEM "
                                       f"private key: {e}")


def _snapshot(path: Path):
    if not path.exists():
        return None
    st = path.stat()
    return path.read_bytes(), stat.S_IMODE(st.st_mode), st.st_uid, st.st_gid


def _restore(path: Path, snapshot):
    """
    Puts back the content a file had before it was replaced, or removes the
    file if it did not exist.
    """
    if snapshot is None:
        path.unlink(missing_ok=True)
        logger.warning(f"File {path} is removed")
        return
    data, mode, owner, group = snapshot
    os.replace(write_temp(path, data, mode, owner, group), path)
    logger.warning(f"Previous content of {path} is restored")


def materialize_all(material: IssuedMaterial, key_path: Path,
                    cert_path: Path):
    """
    Places the issued key and certificate at their final paths. Both files
    are fully written to temporary siblings before any of them is renamed.
    The key is renamed first, then the certificate. If the certificate can't
    be renamed, the key is rolled back, so a new key never stays next to an
    old or missing certificate.

    :param material: Material returned by the poller after issuance
    :type material: CertAutolib.models.request.IssuedMaterial
    :param key_path: Final path of the private key
    :type key_path: pathlib.Path
    :param cert_path: Final path of the certificate
    :type cert_path: pathlib.Path
    :raises CertAutolibMaterialError: If the material was not issued, is
                                      incomplete, is not valid PEM or can't
                                      be written
    """
    if not isinstance(material, IssuedMaterial):
        raise CertAutolibMaterialError("Only issued material can be written")
    if not material.cert_bytes or not material.key_bytes:
        raise CertAutolibMaterialError("Issued material is incomplete")
    _validate_material(material)

    key_path, cert_path = Path(key_path), Path(cert_path)
    temps = []
    try:
        temps.append(write_temp(key_path, material.key_bytes,
                                material.key_mode, material.owner,
                                material.group))
        temps.append(write_temp(cert_path, material.cert_bytes,
                                material.cert_mode, material.owner,
                                material.group))
        key_tmp, cert_tmp = temps
        previous_key = _snapshot(key_path)
        os.replace(key_tmp, key_path)
        try:
            os.replace(cert_tmp, cert_path)
        except OSError:
            _restore(key_path, previous_key)
            raise
    except OSError as e:
        raise CertAutolibMaterialError(f"Key {key_path} and certificate "
                                       f"{cert_path} can't be written: {e}")
    finally:
        for tmp in temps:
            tmp.unlink(missing_ok=True)
    logger.info(f"Key {key_path} and certificate {cert_path} are in place")
