import logging
import uuid
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import List, Optional

from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from . import crud, schemas, verification
from .auth import Principal, get_current_principal
from .config import get_settings
from .db import get_db, init_db
from .errors import FlavourlyError
from .media import MediaStore, build_media_store

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # Initialize DB once at startup
    init_db()
    yield


app = FastAPI(
    title="Flavourly",
    description="Recipe submission with nutritionist verification",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
    response = await call_next(request)
    response.headers["X-Request-Id"] = request_id
    logger.info(
        "%s %s -> %s id=%s",
        request.method,
        request.url.path,
        response.status_code,
        request_id,
    )
    return response


@app.exception_handler(FlavourlyError)
async def flavourly_error_handler(request: Request, exc: FlavourlyError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.reason, "message": exc.message},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    problems = [
        f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}"
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"error": "validation_error", "message": "; ".join(problems)},
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": "internal_error", "message": "Internal server error"},
    )


@lru_cache(maxsize=1)
def get_media_store() -> MediaStore:
    return build_media_store()


def _link_header(request: Request, page: int, page_size: int, total: int) -> str:
    links = []
    if page > 1:
        prev_url = request.url.include_query_params(page=page - 1, page_size=page_size)
        links.append(f'<{prev_url}>; rel="prev"')
    if page * page_size < total:
        next_url = request.url.include_query_params(page=page + 1, page_size=page_size)
        links.append(f'<{next_url}>; rel="next"')
    return ", ".join(links)


@app.get("/health")
def health(db: Session = Depends(get_db)):
    db.execute(text("SELECT 1"))
    return {"status": "healthy", "database": "connected"}


@app.post("/recipes")
def create_recipe(
    content: schemas.RecipeContent,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    recipe = crud.create_recipe(db, principal, content)
    return {"success": True, "recipe": {"id": recipe.id, "title": recipe.title}}


@app.get("/recipes/public", response_model=schemas.RecipePage)
def public_recipes(
    request: Request,
    response: Response,
    page: int = Query(1, ge=1),
    page_size: int = Query(12, ge=1, le=100),
    db: Session = Depends(get_db),
):
    recipes, total = crud.get_public_recipes(
        db, skip=(page - 1) * page_size, limit=page_size
    )
    link = _link_header(request, page, page_size, total)
    if link:
        response.headers["Link"] = link
    return schemas.RecipePage(
        items=[crud.recipe_summary(r) for r in recipes],
        total=total,
        page=page,
        page_size=page_size,
    )


@app.get("/recipes/my-recipes", response_model=List[schemas.RecipeSummary])
def my_recipes(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return [crud.recipe_summary(r) for r in crud.get_author_recipes(db, principal)]


@app.get("/recipes/{recipe_id}", response_model=schemas.RecipeDetail)
def get_recipe(recipe_id: int, db: Session = Depends(get_db)):
    return crud.recipe_detail(crud.get_recipe_or_404(db, recipe_id))


@app.put("/recipes/{recipe_id}")
def update_recipe(
    recipe_id: int,
    content: schemas.RecipeContent,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    crud.update_recipe(db, recipe_id, principal, content)
    return {"message": "Recipe updated successfully", "recipeId": recipe_id}


@app.delete("/recipes/{recipe_id}")
def delete_recipe(
    recipe_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
    media_store: MediaStore = Depends(get_media_store),
):
    crud.delete_recipe(db, recipe_id, principal, media_store)
    return {"message": "Recipe deleted successfully"}


@app.patch("/recipes/{recipe_id}/update-status")
def update_status(
    recipe_id: int,
    body: schemas.StatusUpdate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    event = verification.event_for_status(body.status)
    recipe = verification.apply_event(db, recipe_id, principal, event, body.notes)
    return {
        "message": "Recipe status updated successfully",
        "recipeId": recipe_id,
        "status": recipe.status.value,
    }


@app.patch("/recipes/{recipe_id}/update")
def update_content(
    recipe_id: int,
    body: schemas.ContentUpdate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    verification.update_content(db, recipe_id, principal, body)
    return {"message": "Recipe updated successfully", "recipeId": recipe_id}


@app.post("/recipes/{recipe_id}/resubmit")
def resubmit_recipe(
    recipe_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    verification.resubmit(db, recipe_id, principal)
    return {"message": "Recipe resubmitted for review successfully"}


@app.get("/recipes/{recipe_id}/reviews", response_model=List[schemas.ReviewOut])
def list_reviews(recipe_id: int, db: Session = Depends(get_db)):
    return [schemas.ReviewOut.model_validate(r) for r in crud.get_reviews(db, recipe_id)]


@app.post("/recipes/{recipe_id}/reviews")
def add_review(
    recipe_id: int,
    body: schemas.ReviewIn,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    review = crud.create_review(db, recipe_id, principal, body)
    return {
        "reviewId": review.id,
        "recipeId": recipe_id,
        "review": schemas.ReviewOut.model_validate(review).model_dump(
            mode="json", by_alias=True
        ),
    }


@app.get(
    "/nutritionist/pending-recipes", response_model=List[schemas.RecipeSummary]
)
def pending_recipes(
    limit: int = Query(20, ge=1, le=100),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return [
        crud.recipe_summary(r) for r in crud.get_pending_recipes(db, principal, limit)
    ]


@app.get("/nutritionist/verified-recipes", response_model=schemas.RecipePage)
def verified_recipes(
    request: Request,
    response: Response,
    page: int = Query(1, ge=1),
    page_size: int = Query(12, ge=1, le=100),
    search: Optional[str] = None,
    sort_by: str = "verified_at",
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    recipes, total = crud.get_verified_by(
        db,
        principal,
        skip=(page - 1) * page_size,
        limit=page_size,
        search=search,
        sort_by=sort_by,
        descending=sort_order == "desc",
    )
    link = _link_header(request, page, page_size, total)
    if link:
        response.headers["Link"] = link
    return schemas.RecipePage(
        items=[crud.recipe_summary(r) for r in recipes],
        total=total,
        page=page,
        page_size=page_size,
    )


@app.get("/nutritionist/stats", response_model=schemas.NutritionistStats)
def nutritionist_stats(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return crud.get_nutritionist_stats(db, principal)


@app.put("/reviews/{review_id}")
def update_review(
    review_id: int,
    body: schemas.ReviewIn,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    review = crud.update_review(db, review_id, principal, body)
    return {
        "reviewId": review.id,
        "recipeId": review.recipe_id,
        "review": schemas.ReviewOut.model_validate(review).model_dump(
            mode="json", by_alias=True
        ),
    }


@app.delete("/reviews/{review_id}")
def delete_review(
    review_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    recipe_id = crud.delete_review(db, review_id, principal)
    return {"message": "Review deleted successfully", "recipeId": recipe_id}



@app.get("/tags", response_model=List[schemas.TagTypeOut])
def list_tags(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return [schemas.TagTypeOut.model_validate(t) for t in crud.get_tag_types(db, principal)]
