from fastapi import APIRouter

router = APIRouter(tags=["root"])

@router.get("/health")
async def health():
    return {"status": "healthy"}
