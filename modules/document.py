import datetime
import logging
import re

import pymongo

import config
from models.document_model import DocumentModel, DocumentType
from time_utils import to_utc_instant, utc_timestamp
from utils import to_object_id

logger = logging.getLogger(__name__)


def create_document(client_id, client_name, url, doc_type=DocumentType.OTHER):
    """Lưu giấy tờ của khách hàng; bỏ qua nếu đường dẫn đã tồn tại."""
    doc = DocumentModel(client_id=str(client_id), client_name=client_name, url=url, type=doc_type)
    if config.db.documents.find_one({"url": doc.url}):
        return None
    return config.db.documents.insert_one({
        "client_id": to_object_id(doc.client_id),
        "client_name": doc.client_name,
        "url": doc.url,
        "type": doc.type.value,
        "created_at": utc_timestamp(),
    }).inserted_id


def save_client_documents(client_id, client_name, images, doc_type):
    """Tách chuỗi ảnh (phân cách bằng dấu phẩy) và lưu từng giấy tờ."""
    if not images:
        return []
    saved = []
    for url in (u.strip() for u in images.split(",")):
        if url:
            doc_id = create_document(client_id, client_name, url, doc_type)
            if doc_id:
                saved.append(doc_id)
    return saved


def get_documents(search=None, date_from=None, date_to=None):
    query = {}
    if search:
        query["client_name"] = {"$regex": re.escape(search), "$options": "i"}
    if date_from or date_to:
        query["created_at"] = {}
        # Ngày lọc theo giờ kinh doanh, created_at lưu theo UTC
        if date_from:
            start = to_utc_instant(datetime.datetime.combine(date_from, datetime.time.min))
            query["created_at"]["$gte"] = start.replace(tzinfo=None)
        if date_to:
            end = to_utc_instant(datetime.datetime.combine(date_to, datetime.time.max))
            query["created_at"]["$lte"] = end.replace(tzinfo=None)
    return list(config.db.documents.find(query).sort("created_at", pymongo.DESCENDING))


def delete_document_by_url(url):
    return config.db.documents.delete_one({"url": url}).deleted_count


def delete_documents_by_client(client_id):
    deleted = config.db.documents.delete_many({"client_id": to_object_id(client_id)}).deleted_count
    logger.info(f"Đã xóa {deleted} giấy tờ của khách hàng {client_id}")
    return deleted


def rename_client_documents(client_id, client_name):
    return config.db.documents.update_many(
        {"client_id": to_object_id(client_id)}, {"$set": {"client_name": client_name}}
    ).modified_count
