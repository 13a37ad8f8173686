"""
Cloudinary media delegate.

The API never stores image bytes: uploads are streamed to Cloudinary inside the
request and only the returned ``secure_url`` is persisted. Deletion derives the
Cloudinary public id (``folder/name``) back from that URL.
"""
import logging
from urllib.parse import urlparse

import cloudinary
import cloudinary.uploader
from cloudinary.exceptions import Error as CloudinaryError
from flask import current_app

from photoshare.errors import MediaUploadError

logger = logging.getLogger(__name__)

HOSTED_DOMAIN = 'cloudinary.com'


def init_app(app):
    """Configure the Cloudinary SDK from the app config."""
    cloudinary.config(
        cloud_name=app.config.get('CLOUDINARY_CLOUD_NAME'),
        api_key=app.config.get('CLOUDINARY_API_KEY'),
        api_secret=app.config.get('CLOUDINARY_API_SECRET'),
        secure=True,
    )
    if not app.config.get('CLOUDINARY_CLOUD_NAME'):
        logger.warning('CLOUDINARY_CLOUD_NAME is not set; image uploads will fail')


def upload_image(upload) -> str:
    """Upload a werkzeug ``FileStorage`` and return its public HTTPS URL."""
    folder = current_app.config['CLOUDINARY_FOLDER']
    try:
        result = cloudinary.uploader.upload(
            upload.stream, folder=folder, resource_type='image'
        )
    except CloudinaryError as exc:
        logger.error('Cloudinary upload of %s failed: %s', upload.filename, exc)
        raise MediaUploadError('Failed to upload image') from exc

    url = result.get('secure_url')
    if not url:
        raise MediaUploadError('Failed to upload image')
    logger.debug('Uploaded %s to %s', upload.filename, url)
    return url


def is_hosted(url) -> bool:
    """True if *url* points at an object we can delete from Cloudinary."""
    if not url:
        return False
    return urlparse(url).netloc.endswith(HOSTED_DOMAIN)


def public_id_from_url(url):
    """
    Derive the public id from a delivery URL.

    https://res.cloudinary.com/<cloud>/image/upload/v123/<folder>/<name>.<ext>
    maps to ``<folder>/<name>``.
    """
    if not url:
        return None
    parts = [part for part in urlparse(url).path.split('/') if part]
    if len(parts) < 2:
        return None
    folder, filename = parts[-2], parts[-1]
    stem, dot, _ = filename.rpartition('.')
    if not dot:
        stem = filename
    if not stem:
        return None
    return f'{folder}/{stem}'


def delete_image(url) -> bool:
    """Best-effort removal of a hosted image; failures are logged, never raised."""
    public_id = public_id_from_url(url)
    if not public_id:
        return False
    try:
        result = cloudinary.uploader.destroy(public_id)
    except Exception:
        logger.warning('Could not delete %s from Cloudinary', public_id, exc_info=True)
        return False

    deleted = result.get('result') == 'ok'
    if not deleted:
        logger.warning('Cloudinary did not delete %s: %s', public_id, result)
    return deleted
