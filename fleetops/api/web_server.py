"""
HTTP API for the operations dashboard.
"""

import json
import logging
import weakref
from datetime import date, datetime
from functools import partial
from typing import Optional

from aiohttp import web, WSMsgType

from ..core.config import ApplicationConfig
from ..data.errors import ConflictError, NotFoundError, TransientStoreError, ValidationError
from ..services.booking_service import BookingService
from ..services.fleet_service import FleetService
from ..services.scheduler import SchedulerService
from ..services.statistics_service import StatisticsService

logger = logging.getLogger(__name__)


def _json_default(value):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


dumps = partial(json.dumps, default=_json_default)


def json_response(data, status: int = 200) -> web.Response:
    return web.json_response(data, status=status, dumps=dumps)


def error_status(error: Exception) -> int:
    if isinstance(error, ValidationError):
        return 400
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, ConflictError):
        return 409
    return 503


class WebServer:
    """Dashboard endpoints over the scheduler, booking and statistics services"""
    CORS_OPTIONS = {
        'Access-Control-Allow-Origin': '*',
        'Access-Control-Allow-Methods': 'GET, POST, OPTIONS',
        'Access-Control-Allow-Headers': '*',
        'Access-Control-Max-Age': '3600',
    }

    def __init__(self, config: ApplicationConfig, scheduler: SchedulerService,
                 statistics: StatisticsService, booking: BookingService,
                 fleet: FleetService):
        self.config = config
        self.scheduler = scheduler
        self.statistics = statistics
        self.booking = booking
        self.fleet = fleet

        self.ws_clients = weakref.WeakSet()

        self.app: Optional[web.Application] = None
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None

    def create_app(self) -> web.Application:
        """Create and configure the web application"""
        app = web.Application(middlewares=[self._cors_middleware, self._error_middleware])

        app.router.add_post('/schedules', self._handle_assign)
        app.router.add_get('/schedules', self._handle_list_schedules)
        app.router.add_get('/schedules/future', self._handle_future_schedules)
        app.router.add_get('/schedules/{schedule_id}', self._handle_get_schedule)
        app.router.add_post('/schedules/{record_id}/start', self._handle_start_schedule)
        app.router.add_post('/schedules/{record_id}/end', self._handle_end_schedule)
        app.router.add_get('/routes/{route_id}/schedules', self._handle_route_schedules)
        app.router.add_post('/assignments', self._handle_assign_driver)
        app.router.add_post('/assignments/{record_id}/start', self._handle_start_assignment)
        app.router.add_post('/assignments/{record_id}/end', self._handle_end_assignment)
        app.router.add_post('/buses/{bus_id}/release', self._handle_release_bus)

        app.router.add_get('/routes', self._handle_list_routes)
        app.router.add_get('/buses', self._handle_list_buses)
        app.router.add_get('/ws/drivers', self._handle_drivers_ws)

        app.router.add_post('/tickets', self._handle_create_ticket)
        app.router.add_get('/tickets', self._handle_list_tickets)
        app.router.add_get('/tickets/{ticket_id}/validity', self._handle_ticket_validity)
        app.router.add_post('/complaints', self._handle_create_complaint)
        app.router.add_get('/ws/complaints', self._handle_complaints_ws)

        app.router.add_get('/statistics', self._handle_dashboard)
        app.router.add_get('/statistics/tickets', self._handle_ticket_statistics)
        app.router.add_get('/statistics/revenue', self._handle_revenue)
        app.router.add_get('/statistics/complaints', self._handle_complaint_statistics)

        app.router.add_route('OPTIONS', '/{tail:.*}', self._handle_options)
        return app

    @web.middleware
    async def _error_middleware(self, request: web.Request, handler):
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except json.JSONDecodeError:
            return json_response({"error": "Request body is not valid JSON"}, status=400)
        except (ValidationError, NotFoundError, ConflictError, TransientStoreError) as e:
            status = error_status(e)
            body = {"error": str(e), "type": type(e).__name__}
            if isinstance(e, ConflictError):
                body["conflictingScheduleId"] = e.conflicting_id
                body["conflictingDepartureTime"] = e.conflicting_time.isoformat()
            if status >= 500:
                logger.error(f"{request.method} {request.path} failed: {e}")
            return json_response(body, status=status)

    @web.middleware
    async def _cors_middleware(self, request: web.Request, handler):
        response = await handler(request)
        if not isinstance(response, web.WebSocketResponse):
            response.headers.update(self.CORS_OPTIONS)
        return response

    async def _read_json(self, request: web.Request) -> dict:
        if not request.can_read_body:
            return {}
        body = await request.json()
        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object")
        return body

    # Scheduling

    async def _handle_assign(self, request: web.Request) -> web.Response:
        """POST /schedules - assign a bus to a route at a departure time"""
        body = await self._read_json(request)
        schedule_id = await self.scheduler.assign(
            body.get("routeId"), body.get("busId"), body.get("departureTime")
        )
        schedule = await self.scheduler.get_schedule(schedule_id)
        return json_response(schedule.to_dict(), status=201)

    async def _handle_list_schedules(self, request: web.Request) -> web.Response:
        schedules = await self.scheduler.get_schedules()
        return json_response([s.to_dict() for s in schedules])

    async def _handle_future_schedules(self, request: web.Request) -> web.Response:
        schedules = await self.scheduler.get_future_schedules()
        return json_response([s.to_dict() for s in schedules])

    async def _handle_get_schedule(self, request: web.Request) -> web.Response:
        schedule = await self.scheduler.get_schedule(request.match_info['schedule_id'])
        return json_response(schedule.to_dict())

    async def _handle_route_schedules(self, request: web.Request) -> web.Response:
        """GET /routes/{route_id}/schedules?date=YYYY-MM-DD"""
        day = None
        if request.query.get('date'):
            try:
                day = date.fromisoformat(request.query['date'])
            except ValueError:
                raise ValidationError(f"Invalid date: {request.query['date']!r}")
        schedules = await self.scheduler.get_schedules_for_route(request.match_info['route_id'], day)
        return json_response([s.to_dict() for s in schedules])

    async def _handle_assign_driver(self, request: web.Request) -> web.Response:
        body = await self._read_json(request)
        assignment_id = await self.scheduler.assign_bus_to_route(
            body.get("busId"), body.get("routeId"), body.get("driverId"),
            body.get("scheduledDeparture"), body.get("scheduledArrival")
        )
        return json_response({"id": assignment_id}, status=201)

    async def _start_trip(self, request: web.Request, kind: str) -> web.Response:
        body = await self._read_json(request)
        trip_id = await self.scheduler.start_trip(
            request.match_info['record_id'], body.get("driverId"), body.get("location"), kind=kind
        )
        return json_response({"status": "in_transit", "tripId": trip_id})

    async def _end_trip(self, request: web.Request, kind: str) -> web.Response:
        body = await self._read_json(request)
        await self.scheduler.end_trip(
            request.match_info['record_id'], body.get("driverId"), body.get("location"), kind=kind
        )
        return json_response({"status": "completed"})

    async def _handle_start_schedule(self, request: web.Request) -> web.Response:
        """POST /schedules/{id}/start - body: {driverId, location}"""
        return await self._start_trip(request, "schedule")

    async def _handle_end_schedule(self, request: web.Request) -> web.Response:
        return await self._end_trip(request, "schedule")

    async def _handle_start_assignment(self, request: web.Request) -> web.Response:
        return await self._start_trip(request, "assignment")

    async def _handle_end_assignment(self, request: web.Request) -> web.Response:
        return await self._end_trip(request, "assignment")

    async def _handle_release_bus(self, request: web.Request) -> web.Response:
        await self.scheduler.make_bus_available(request.match_info['bus_id'])
        return json_response({"status": "available"})

    # Fleet

    async def _handle_list_routes(self, request: web.Request) -> web.Response:
        routes = await self.fleet.get_routes()
        return json_response([r.to_dict() for r in routes])

    async def _handle_list_buses(self, request: web.Request) -> web.Response:
        buses = await self.fleet.get_buses()
        return json_response([b.to_dict() for b in buses])

    async def _handle_drivers_ws(self, request: web.Request) -> web.WebSocketResponse:
        """GET /ws/drivers - push every driver status on each change"""
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        self.ws_clients.add(ws)

        async def push(drivers):
            if not ws.closed:
                await ws.send_str(dumps(drivers))

        subscription = await self.fleet.subscribe_to_drivers(push)
        try:
            async for msg in ws:
                if msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.ERROR):
                    break
        finally:
            subscription.cancel()
            self.ws_clients.discard(ws)
            await ws.close()
        return ws

    # Booking

    async def _handle_create_ticket(self, request: web.Request) -> web.Response:
        body = await self._read_json(request)
        ticket = await self.booking.create_ticket(
            route_id=body.get("routeId"),
            passenger_name=body.get("passengerName"),
            phone_number=body.get("phoneNumber"),
            departure_time=body.get("departureTime"),
            bus_number=body.get("busNumber", ""),
            fare=body.get("fare"),
        )
        return json_response(ticket.to_dict(), status=201)

    async def _handle_list_tickets(self, request: web.Request) -> web.Response:
        tickets = await self.booking.get_tickets()
        return json_response([t.to_dict() for t in tickets])

    async def _handle_ticket_validity(self, request: web.Request) -> web.Response:
        ticket_id = request.match_info['ticket_id']
        return json_response({"id": ticket_id, "valid": await self.booking.is_ticket_valid(ticket_id)})

    async def _handle_create_complaint(self, request: web.Request) -> web.Response:
        body = await self._read_json(request)
        complaint = await self.booking.create_complaint(
            body.get("subject"), body.get("description", ""), body.get("source")
        )
        return json_response(complaint.to_dict(), status=201)

    async def _handle_complaints_ws(self, request: web.Request) -> web.WebSocketResponse:
        """GET /ws/complaints - push the full complaint list on every change"""
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        self.ws_clients.add(ws)

        async def push(complaints):
            if not ws.closed:
                await ws.send_str(dumps([c.to_dict() for c in complaints]))

        subscription = await self.booking.subscribe_to_complaints(push)
        try:
            async for msg in ws:
                if msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.ERROR):
                    break
        finally:
            subscription.cancel()
            self.ws_clients.discard(ws)
            await ws.close()
        return ws

    # Statistics

    async def _handle_dashboard(self, request: web.Request) -> web.Response:
        return json_response(await self.statistics.dashboard())

    async def _handle_ticket_statistics(self, request: web.Request) -> web.Response:
        """GET /statistics/tickets?period=daily|weekly|monthly|yearly"""
        period = request.query.get('period', 'monthly')
        buckets = await self.statistics.ticket_statistics(period)
        return json_response({"period": period, "tickets": [b.to_dict() for b in buckets]})

    async def _handle_revenue(self, request: web.Request) -> web.Response:
        days = request.query.get('days')
        try:
            days = int(days) if days is not None else None
        except ValueError:
            raise ValidationError(f"Invalid number of days: {days!r}")
        return json_response(await self.statistics.revenue_by_period(days))

    async def _handle_complaint_statistics(self, request: web.Request) -> web.Response:
        return json_response(await self.statistics.complaint_statistics())

    async def _handle_options(self, request: web.Request) -> web.Response:
        """Handle OPTIONS preflight requests"""
        return web.Response()

    async def start(self, host: Optional[str] = None, port: Optional[int] = None) -> None:
        """Start the web server"""
        host = host or self.config.web_host
        port = port or self.config.web_port
        logger.info(f"Starting web server on {host}:{port}")

        self.app = self.create_app()
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()

        self.site = web.TCPSite(self.runner, host, port)
        await self.site.start()

        logger.info(f"Web server started on {host}:{port}")

    async def stop(self) -> None:
        """Stop the web server gracefully"""
        logger.info("Stopping web server...")

        for ws in list(self.ws_clients):
            await ws.close()
            self.ws_clients.discard(ws)

        if self.site:
            await self.site.stop()
        if self.runner:
            await self.runner.cleanup()

        logger.info("Web server stopped")
