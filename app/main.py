from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.config import get_settings
from app.routers import auth, chats, tutor

settings = get_settings()

app = FastAPI(title="Tutor API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router)
app.include_router(chats.router)
app.include_router(tutor.router)


@app.get("/")
def root():
    return {"message": "Tutor API", "docs": "/docs"}
