from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.core.dependencies import get_db, get_current_active_user
from app.models.user import User
from app.schemas import article as schemas_article
from app.services import usage_service

router = APIRouter()


@router.post("/", response_model=schemas_article.Article, status_code=status.HTTP_201_CREATED)
def create_article(
    article_in: schemas_article.ArticleCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    """
    Record a generated article, if the monthly quota allows it.
    """
    usage = usage_service.check_usage_or_deny(db, current_user.id)
    if not usage.allowed:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "message": "Monthly article limit reached or subscription inactive",
                "plan": usage.plan,
                "used": usage.used,
                "limit": usage.limit,
            },
        )
    return usage_service.record_article(db, current_user.id, article_in.title)
