import uuid
import logging
from datetime import datetime

HISTORY_LIMIT = 30

# Mongo's _id is left out of everything returned to callers
NO_MONGO_ID = {"_id": 0}


async def log_user_action(history_collection, user_email, action, resource_type, resource_id, details=None):
    """Records a create/update/delete in the user's history. Failures are logged, not raised."""
    try:
        await history_collection.insert_one({
            "user_email": user_email,
            "action": action,
            "resource_type": resource_type,
            "resource_id": resource_id,
            "details": details or {},
            "created_at": datetime.utcnow(),
        })
    except Exception as e:
        logging.error(f"Failed to log user action {action} on {resource_type} {resource_id}: {e}", exc_info=True)


async def save_jd(jd_collection, history_collection, jd_data, user_email):
    """
    Creates a job description, or updates it when `jd_data` carries an id the user owns.

    Args:
        jd_collection: Motor collection holding job descriptions.
        history_collection: Motor collection for the user's action history.
        jd_data (dict): Fields from the save request.
        user_email (str): The owner.

    Returns:
        dict or None: The stored record, or None if the id does not belong to the user.
    """
    now = datetime.utcnow()
    fields = {
        "title": jd_data["title"],
        "department": jd_data.get("department") or "",
        "content": jd_data.get("content"),
        "is_template": bool(jd_data.get("is_template")),
        "is_public": bool(jd_data.get("is_public")),
        "status": jd_data.get("status") or "draft",
        "updated_at": now,
    }

    jd_id = jd_data.get("id")
    if jd_id:
        result = await jd_collection.update_one({"id": jd_id, "user_email": user_email}, {"$set": fields})
        if result.matched_count == 0:
            logging.warning(f"Job description {jd_id} not found for {user_email}")
            return None
        action = "update"
    else:
        jd_id = str(uuid.uuid4())
        await jd_collection.insert_one({**fields, "id": jd_id, "user_email": user_email, "created_at": now})
        action = "create"

    await log_user_action(history_collection, user_email, action, "job_description", jd_id,
                          {"title": fields["title"]})
    logging.info(f"Job description {jd_id} saved ({action}) by {user_email}")
    return await jd_collection.find_one({"id": jd_id}, NO_MONGO_ID)


async def get_jd(jd_collection, jd_id, user_email=None):
    """Returns a job description the user owns, or any public one."""
    jd = await jd_collection.find_one({"id": jd_id}, NO_MONGO_ID)
    if not jd:
        return None
    if jd.get("user_email") != user_email and not jd.get("is_public"):
        return None
    return jd


async def get_user_jds(jd_collection, user_email, limit=HISTORY_LIMIT):
    cursor = jd_collection.find({"user_email": user_email}, NO_MONGO_ID).sort("updated_at", -1).limit(limit)
    return await cursor.to_list(length=limit)


async def delete_jd(jd_collection, history_collection, jd_id, user_email):
    """Deletes a job description the user owns. Returns True if something was deleted."""
    result = await jd_collection.delete_one({"id": jd_id, "user_email": user_email})
    if result.deleted_count == 0:
        return False
    await log_user_action(history_collection, user_email, "delete", "job_description", jd_id)
    logging.info(f"Job description {jd_id} deleted by {user_email}")
    return True


async def check_connection(db):
    """Pings the database. Returns (ok, error message)."""
    try:
        await db.command("ping")
        return True, None
    except Exception as e:
        logging.error(f"Database connection check failed: {e}", exc_info=True)
        return False, "Database connection failed"
