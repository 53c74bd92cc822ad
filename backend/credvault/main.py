from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from credvault.api import router

app = FastAPI(title="credvault")

# Loopback tooling only
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r"https?://(localhost|127\.0\.0\.1)(:\d+)?",
    allow_credentials=False,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

app.include_router(router, prefix="/api")

@app.get("/")
def health_check():
    return {"status": "credvault running"}
