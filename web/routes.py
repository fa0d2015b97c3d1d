"""
web/routes.py -- Jinja2 template routes for the Weight Tracker web UI.

These routes serve server-rendered HTML shells. Pages carry no user data:
authentication is token-based and the tokens live in the browser's
localStorage, so the interactive parts (login form, register form, dashboard)
call the JSON API from web/static/app.js after the page loads.

Routes:
  GET /           -- landing page
  GET /login      -- sign-in form
  GET /register   -- sign-up form
  GET /dashboard  -- current user's profile (redirects to /login client-side
                     when no valid token is stored)
"""

import logging
from pathlib import Path

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

logger = logging.getLogger("weighttracker.web")

WEB_DIR = Path(__file__).parent
STATIC_DIR = WEB_DIR / "static"

templates = Jinja2Templates(directory=str(WEB_DIR / "templates"))
router = APIRouter()

# Activity levels shown on the dashboard, in the order the API accepts them.
_ACTIVITY_LABELS: dict[str, str] = {
    "sedentary": "Sedentary",
    "light": "Lightly active",
    "moderate": "Moderately active",
    "active": "Active",
    "very_active": "Very active",
}
templates.env.globals["activity_labels"] = _ACTIVITY_LABELS


@router.get("/", response_class=HTMLResponse)
def index(request: Request) -> HTMLResponse:
    """Landing page with sign-in / sign-up calls to action."""
    return templates.TemplateResponse(request, "index.html", {"page": "home"})


@router.get("/login", response_class=HTMLResponse)
def login_page(request: Request) -> HTMLResponse:
    return templates.TemplateResponse(request, "login.html", {"page": "login"})


@router.get("/register", response_class=HTMLResponse)
def register_page(request: Request) -> HTMLResponse:
    return templates.TemplateResponse(request, "register.html", {"page": "register"})


@router.get("/dashboard", response_class=HTMLResponse)
def dashboard_page(request: Request) -> HTMLResponse:
    """Dashboard shell. The profile is fetched from GET /auth/me in the browser."""
    return templates.TemplateResponse(request, "dashboard.html", {"page": "dashboard"})
