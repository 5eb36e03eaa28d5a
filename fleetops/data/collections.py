# Collection names used in the document store
ROUTES = "routes"
BUSES = "buses"
DRIVERS = "drivers"
DRIVER_STATUS = "driver_status"
SCHEDULES = "schedules"
ASSIGNMENTS = "bus_route_assignments"
TRIP_TRACKING = "trip_tracking"
TICKETS = "tickets"
COMPLAINTS = "complaints"
