import logging
import re

import pymongo

import config
from models.client_model import ClientModel
from models.document_model import DocumentType
from modules.document import delete_documents_by_client, rename_client_documents, save_client_documents
from time_utils import utc_timestamp
from utils import to_object_id

logger = logging.getLogger(__name__)


def _save_documents(client_id, client):
    save_client_documents(client_id, client.full_name, client.passport_image, DocumentType.PASSPORT)
    save_client_documents(client_id, client.full_name, client.license_image, DocumentType.LICENSE)


def create_client(**fields):
    client = ClientModel(**fields)
    data = client.model_dump()
    data["created_at"] = utc_timestamp()
    client_id = config.db.clients.insert_one(data).inserted_id
    _save_documents(client_id, client)
    logger.info(f"Đã thêm khách hàng {client.full_name}")
    return {"status": "success", "client_id": client_id}


def update_client(client_id, **fields):
    """Cập nhật các trường được truyền vào; các trường khác giữ nguyên."""
    client_oid = to_object_id(client_id)
    existing = config.db.clients.find_one({"_id": client_oid}) if client_oid else None
    if not existing:
        return {"status": "not_found", "message": "Không tìm thấy khách hàng"}
    current = {key: existing.get(key) for key in ClientModel.model_fields}
    client = ClientModel(**dict(current, **fields))
    data = {key: value for key, value in client.model_dump().items() if key in fields}
    if data:
        config.db.clients.update_one({"_id": client_oid}, {"$set": data})
    if client.full_name != existing.get("full_name"):
        rename_client_documents(client_oid, client.full_name)
    _save_documents(client_oid, client)
    return {"status": "success", "client_id": client_oid}


def delete_client(client_id):
    client_oid = to_object_id(client_id)
    client = config.db.clients.find_one({"_id": client_oid}) if client_oid else None
    if not client:
        return {"status": "not_found", "message": "Không tìm thấy khách hàng"}
    delete_documents_by_client(client_oid)
    config.db.clients.delete_one({"_id": client_oid})
    logger.info(f"Đã xóa khách hàng {client['full_name']}")
    return {"status": "success", "client_id": client_oid}


def get_client(client_id):
    client_oid = to_object_id(client_id)
    return config.db.clients.find_one({"_id": client_oid}) if client_oid else None


def get_all_clients():
    return list(config.db.clients.find().sort("created_at", pymongo.DESCENDING))


def get_clients(page=1, limit=20, search=""):
    page = max(int(page), 1)
    limit = max(int(limit), 1)
    query = {}
    if search:
        pattern = re.escape(search)
        query["$or"] = [
            {field: {"$regex": pattern, "$options": "i"}}
            for field in ("full_name", "passport_id", "driving_license", "id_number")
        ]
    total = config.db.clients.count_documents(query)
    clients = list(
        config.db.clients.find(query)
        .sort("created_at", pymongo.DESCENDING)
        .skip((page - 1) * limit)
        .limit(limit)
    )
    return {"clients": clients, "total": total, "page": page, "limit": limit}
