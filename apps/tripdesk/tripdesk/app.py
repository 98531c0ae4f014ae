from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

from fastapi import BackgroundTasks, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from starlette.datastructures import UploadFile
from starlette.middleware.sessions import SessionMiddleware

from tripdesk.avatars import AvatarUpload, backfill_avatar
from tripdesk.backend import STORAGE_PUBLIC_PREFIX, connect_backend
from tripdesk.config import BASE_DIR, Config, is_backend_configured
from tripdesk.models import PAYMENT_STATUS_LABELS, PaymentStatus
from tripdesk.pages import DonationsView, ParticipantsView
from tripdesk.services import ParticipantService
from tripdesk.submissions import submit_avatar_change, submit_donation, submit_registration

logger = logging.getLogger(__name__)

REGISTRATION_FIELDS = ("full_name", "phone_number", "email", "number_of_guests", "payment_status", "amount_paid")
DONATION_FIELDS = ("item_name", "quantity", "description")
REGISTRATION_DEFAULTS = {"number_of_guests": 1, "payment_status": PaymentStatus.pending.value, "amount_paid": 0}


def configure_logging(config=Config) -> None:
    level = logging.DEBUG if config.DEBUG else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    logging.getLogger("tripdesk").setLevel(level)
    if config.DEBUG:
        logging.getLogger("sqlstratum").setLevel(logging.DEBUG)


templates = Jinja2Templates(directory=str(BASE_DIR / "templates"))
templates.env.globals["payment_labels"] = PAYMENT_STATUS_LABELS
templates.env.globals["PaymentStatus"] = PaymentStatus


def _format_date(value) -> str:
    if not value:
        return "Unknown date"
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    return value.strftime("%d %b %Y")


templates.env.filters["date"] = _format_date


def _form_fields(form, names) -> dict:
    return {name: (form.get(name) or "").strip() for name in names}


async def _avatar_from_form(form, backend, config) -> AvatarUpload:
    upload = AvatarUpload(backend.storage, config)
    avatar = form.get("avatar")
    if isinstance(avatar, UploadFile) and avatar.filename:
        data = await avatar.read(config.AVATAR_MAX_BYTES + 1)
        upload.select(avatar.filename, avatar.content_type, data)
    return upload


def create_app(config=Config) -> FastAPI:
    app = FastAPI(title="Trip Desk")
    app.add_middleware(SessionMiddleware, secret_key=config.SECRET_KEY, same_site="lax")
    app.state.config = config
    app.state.backend = None
    app.state.service = None

    storage_dir = Path(config.STORAGE_DIR)
    storage_dir.mkdir(parents=True, exist_ok=True)
    app.mount(STORAGE_PUBLIC_PREFIX, StaticFiles(directory=str(storage_dir)), name="storage")

    @app.on_event("startup")
    def _startup() -> None:
        if not is_backend_configured(config):
            logger.warning("Backend URL or key missing; pages will show the setup notice")
            return
        backend = connect_backend(config)
        app.state.backend = backend
        app.state.service = ParticipantService(backend)

    @app.on_event("shutdown")
    def _shutdown() -> None:
        backend = app.state.backend
        if backend is not None:
            backend.close()
            app.state.backend = None
            app.state.service = None

    def render(request: Request, template_name: str, status_code: int = 200, **context):
        return templates.TemplateResponse(
            request,
            template_name,
            {
                "config": config,
                "configured": app.state.service is not None,
                **context,
            },
            status_code=status_code,
        )

    def setup_required(request: Request, page: str):
        return render(request, "setup.html", status_code=503, page=page)

    @app.get("/", response_class=HTMLResponse)
    def index(request: Request):
        trip_date = datetime.fromisoformat(config.TRIP_DATE)
        return render(request, "public/index.html", trip_date=trip_date)

    @app.get("/about", response_class=HTMLResponse)
    def about(request: Request):
        return render(request, "public/about.html")

    @app.get("/contact", response_class=HTMLResponse)
    def contact(request: Request):
        return render(request, "public/contact.html")

    @app.get("/register", response_class=HTMLResponse)
    def registration_form(request: Request):
        if app.state.service is None:
            return setup_required(request, "registration system")
        return render(request, "public/register.html", form_data=REGISTRATION_DEFAULTS, errors={})

    @app.post("/register")
    async def registration_submit(request: Request):
        service = app.state.service
        if service is None:
            return setup_required(request, "registration system")

        form = await request.form()
        form_data = _form_fields(form, REGISTRATION_FIELDS)
        upload = await _avatar_from_form(form, app.state.backend, config)
        outcome = await submit_registration(service, form_data, upload, config)
        if not outcome.success:
            return render(
                request,
                "public/register.html",
                form_data=form_data,
                errors=outcome.errors,
                error=outcome.error,
            )

        record = outcome.record
        request.session["registered"] = {
            "full_name": record.full_name,
            "payment_status": record.payment_status.value,
            "amount_paid": record.amount_paid,
        }
        return RedirectResponse(url="/register/done", status_code=303)

    @app.get("/register/done", response_class=HTMLResponse)
    def registration_done(request: Request):
        registered = request.session.get("registered")
        if not registered:
            return RedirectResponse(url="/register", status_code=303)
        status = PaymentStatus(registered["payment_status"])
        return render(request, "public/register_done.html", registered=registered, status=status)

    @app.get("/participants", response_class=HTMLResponse)
    async def participants_page(request: Request, background_tasks: BackgroundTasks):
        service = app.state.service
        if service is None:
            return setup_required(request, "participant list")
        view = ParticipantsView(service, config)
        await view.load()
        for participant in view.missing_avatars():
            background_tasks.add_task(backfill_avatar, service, participant, config)
        return render(request, "public/participants.html", view=view)

    async def _participant_or_404(service: ParticipantService, participant_id: str):
        participants = await service.get_participants()
        participant = next((p for p in participants if p.id == participant_id), None)
        if participant is None:
            raise HTTPException(status_code=404, detail="Participant not found")
        return participant

    @app.get("/participants/{participant_id}/avatar", response_class=HTMLResponse)
    async def avatar_form(participant_id: str, request: Request):
        service = app.state.service
        if service is None:
            return setup_required(request, "participant list")
        participant = await _participant_or_404(service, participant_id)
        return render(request, "public/avatar_form.html", participant=participant, errors={})

    @app.post("/participants/{participant_id}/avatar")
    async def avatar_submit(participant_id: str, request: Request):
        service = app.state.service
        if service is None:
            return setup_required(request, "participant list")
        participant = await _participant_or_404(service, participant_id)

        form = await request.form()
        upload = await _avatar_from_form(form, app.state.backend, config)
        outcome = await submit_avatar_change(service, participant, upload, config)
        if not outcome.success:
            return render(
                request,
                "public/avatar_form.html",
                participant=participant,
                errors=outcome.errors,
                error=outcome.error,
            )
        return RedirectResponse(url="/participants", status_code=303)

    @app.get("/donations", response_class=HTMLResponse)
    async def donations_page(request: Request):
        service = app.state.service
        if service is None:
            return setup_required(request, "donations feature")
        view = DonationsView(service, config)
        await view.load()

        participant_id = request.query_params.get("participant_id")
        selected = view.find_participant(participant_id)
        if participant_id and selected is None:
            raise HTTPException(status_code=404, detail="Participant not found")
        show_form = selected is not None or request.query_params.get("add") == "1"
        return render(
            request,
            "public/donations.html",
            view=view,
            selected=selected,
            show_form=show_form,
            form_data={"quantity": 1},
            errors={},
        )

    @app.post("/donations")
    async def donation_submit(request: Request):
        service = app.state.service
        if service is None:
            return setup_required(request, "donations feature")

        form = await request.form()
        participant_id = (form.get("participant_id") or "").strip()
        form_data = _form_fields(form, DONATION_FIELDS)

        view = DonationsView(service, config)
        await view.load()
        outcome = await submit_donation(service, view.participants, participant_id, form_data)
        if not outcome.success:
            return render(
                request,
                "public/donations.html",
                view=view,
                selected=view.find_participant(participant_id),
                show_form=True,
                form_data=form_data,
                errors=outcome.errors,
                error=outcome.error,
            )
        return RedirectResponse(url="/donations", status_code=303)

    async def _live(websocket: WebSocket, view_cls, partial: str) -> None:
        await websocket.accept()
        service = app.state.service
        if service is None:
            await websocket.close(code=1013)
            return

        async def push(names):
            html = templates.env.get_template(partial).render(view=view, config=config)
            await websocket.send_json({"lists": list(names), "html": html})

        view = view_cls(service, config, on_refresh=push)
        try:
            await view.mount()
            await push(list(view.lists))
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            logger.debug("Live %s socket closed", partial)
        finally:
            await view.unmount()

    @app.websocket("/live/participants")
    async def live_participants(websocket: WebSocket):
        await _live(websocket, ParticipantsView, "partials/participants_live.html")

    @app.websocket("/live/donations")
    async def live_donations(websocket: WebSocket):
        await _live(websocket, DonationsView, "partials/donations_live.html")

    return app


configure_logging()

app = create_app()
