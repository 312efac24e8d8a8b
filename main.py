import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List

import uvicorn
from fastapi import Body, Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError, PyMongoError

from auth import (
    caller_email,
    clear_token_cookie,
    create_access_token,
    ensure_owner_or_admin,
    ensure_same_email,
    forbidden,
    is_admin,
    require_admin,
    set_token_cookie,
    verify_token,
)
from config import CORS_ORIGINS, DATABASE_NAME, DEFAULT_PAGE_SIZE, LOG_LEVEL, PORT
from database import (
    COURSES,
    ENROLLMENTS,
    USERS,
    StoreUnavailable,
    count_documents,
    create_client,
    create_document,
    delete_documents,
    ensure_indexes,
    get_db,
    get_document,
    get_documents,
    parse_object_id,
    ping,
    update_document,
)
from queries import InvalidArgument, build_course_filter, build_course_query, is_featured_requested
from schemas import Count, Course, CourseUpdate, Enrollment, RoleUpdate, User, normalize_email

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    client = create_client()
    app.state.db = client[DATABASE_NAME]
    try:
        await ensure_indexes(app.state.db)
    except PyMongoError as e:
        logger.warning("Could not create indexes: %s", e)
    logger.info("Connected to database %s", DATABASE_NAME)
    yield
    client.close()
    logger.info("Database client closed")


app = FastAPI(title="EducareHub API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StoreUnavailable)
async def store_unavailable_handler(request: Request, exc: StoreUnavailable):
    return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"detail": "Database unavailable"})


@app.exception_handler(InvalidArgument)
async def invalid_argument_handler(request: Request, exc: InvalidArgument):
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


def not_found(what: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{what} not found")


async def find_course(db: AsyncIOMotorDatabase, course_id: str) -> Dict[str, Any]:
    oid = parse_object_id(course_id)
    course = await get_document(db, COURSES, {"_id": oid}) if oid else None
    if not course:
        raise not_found("Course")
    return course


@app.get("/")
async def root():
    return {"ok": True, "service": "educarehub-api"}


@app.get("/test")
async def test(db: AsyncIOMotorDatabase = Depends(get_db)):
    # Verify db connection on demand
    await ping(db)
    return {"status": "ok"}


# Auth routes
@app.post("/jwt")
async def issue_token(response: Response, user: Dict[str, Any] = Body(...)):
    set_token_cookie(response, create_access_token(user))
    return {"success": True}


@app.post("/logout")
async def logout(response: Response):
    clear_token_cookie(response)
    return {"success": True}


# Users
USER_EXISTS = {"message": "User already exists", "insertedId": None}


@app.post("/users")
async def create_user(user: User, db: AsyncIOMotorDatabase = Depends(get_db)):
    existing = await get_document(db, USERS, {"email": user.email})
    if existing:
        return USER_EXISTS
    try:
        return await create_document(db, USERS, {**user.model_dump(), "role": "user"})
    except DuplicateKeyError:
        # lost a race with a concurrent registration
        logger.info("User %s registered concurrently", user.email)
        return USER_EXISTS


@app.get("/users", response_model=List[dict])
async def list_users(admin=Depends(require_admin), db: AsyncIOMotorDatabase = Depends(get_db)):
    return await get_documents(db, USERS)


@app.get("/users/{email}")
async def get_user(email: str, claims=Depends(verify_token), db: AsyncIOMotorDatabase = Depends(get_db)):
    ensure_same_email(email, claims)
    user = await get_document(db, USERS, {"email": normalize_email(email)})
    if not user:
        raise not_found("User")
    return user


@app.patch("/users/role/{user_id}")
async def update_user_role(
    user_id: str, payload: RoleUpdate, admin=Depends(require_admin), db: AsyncIOMotorDatabase = Depends(get_db)
):
    oid = parse_object_id(user_id)
    if oid is None:
        raise not_found("User")
    result = await update_document(db, USERS, {"_id": oid}, {"role": payload.role})
    if result["matchedCount"] == 0:
        raise not_found("User")
    return result


# Courses
@app.get("/courses", response_model=List[dict])
async def list_courses(
    page: int = 0,
    size: int = DEFAULT_PAGE_SIZE,
    search: str = "",
    category: str = "",
    sort: str = "createdAt",
    featured: str = "false",
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    query = build_course_query(page, size, search, category, sort, featured)
    return await get_documents(db, COURSES, query.filter, query.sort, query.skip, query.limit)


@app.get("/courses-count", response_model=Count)
async def courses_count(
    search: str = "", category: str = "", featured: str = "false", db: AsyncIOMotorDatabase = Depends(get_db)
):
    query = build_course_filter(search, category, is_featured_requested(featured))
    return {"count": await count_documents(db, COURSES, query)}


@app.get("/courses/{course_id}")
async def get_course(course_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    return await find_course(db, course_id)


@app.get("/my-courses/{email}", response_model=List[dict])
async def my_courses(email: str, claims=Depends(verify_token), db: AsyncIOMotorDatabase = Depends(get_db)):
    ensure_same_email(email, claims)
    return await get_documents(db, COURSES, {"instructorEmail": normalize_email(email)}, [("createdAt", -1)])


@app.post("/courses")
async def create_course(course: Course, claims=Depends(verify_token), db: AsyncIOMotorDatabase = Depends(get_db)):
    data = course.model_dump()
    caller = caller_email(claims)
    if data["instructorEmail"] is None:
        if not caller:
            raise forbidden()
        data["instructorEmail"] = caller
    elif data["instructorEmail"] != caller and not await is_admin(db, claims):
        raise forbidden()
    data["createdAt"] = datetime.now(timezone.utc)
    return await create_document(db, COURSES, data)


@app.put("/courses/{course_id}")
async def update_course(
    course_id: str,
    course: CourseUpdate,
    claims=Depends(verify_token),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    existing = await find_course(db, course_id)
    await ensure_owner_or_admin(db, existing.get("instructorEmail"), claims)
    updates = course.model_dump(exclude_unset=True)
    if not updates:
        raise InvalidArgument("No updatable fields supplied")
    return await update_document(db, COURSES, {"_id": parse_object_id(course_id)}, updates)


@app.delete("/courses/{course_id}")
async def delete_course(course_id: str, claims=Depends(verify_token), db: AsyncIOMotorDatabase = Depends(get_db)):
    existing = await find_course(db, course_id)
    await ensure_owner_or_admin(db, existing.get("instructorEmail"), claims)
    canonical_id = existing["_id"]
    enrollments = await delete_documents(db, ENROLLMENTS, {"courseId": canonical_id}, many=True)
    course = await delete_documents(db, COURSES, {"_id": parse_object_id(canonical_id)})
    logger.info("Deleted course %s and %d enrollment(s)", canonical_id, enrollments["deletedCount"])
    return {"enrollments": enrollments, "course": course}


# Enrollments
@app.post("/enrollments")
async def create_enrollment(
    enrollment: Enrollment, claims=Depends(verify_token), db: AsyncIOMotorDatabase = Depends(get_db)
):
    data = enrollment.model_dump()
    caller = caller_email(claims)
    if data["studentEmail"] is None:
        data["studentEmail"] = caller
    if not caller or data["studentEmail"] != caller:
        raise forbidden()
    course = await find_course(db, data["courseId"])
    data["courseId"] = course["_id"]
    data["enrollmentDate"] = datetime.now(timezone.utc)
    return await create_document(db, ENROLLMENTS, data)


@app.get("/my-enrollments/{email}", response_model=List[dict])
async def my_enrollments(email: str, claims=Depends(verify_token), db: AsyncIOMotorDatabase = Depends(get_db)):
    ensure_same_email(email, claims)
    return await get_documents(db, ENROLLMENTS, {"studentEmail": normalize_email(email)})


if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=PORT)
