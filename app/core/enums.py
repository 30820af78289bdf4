from enum import Enum


class UserRole(str, Enum):
    ADMIN = "admin"
    CLIENT = "client"
    DRIVER = "driver"
    BROKER = "broker"

    def __str__(self):
        return self.value


class VehicleType(str, Enum):
    SEDAN = "sedan"
    SUV = "suv"
    PICKUP = "pickup"
    TRUCK = "truck"
    LUXURY = "luxury"
    MOTORCYCLE = "motorcycle"
    HEAVY = "heavy"

    def __str__(self):
        return self.value


class DeliveryType(str, Enum):
    EXPEDITED = "expedited"
    STANDARD = "standard"

    def __str__(self):
        return self.value


class ConfigAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    ACTIVATE = "activate"

    def __str__(self):
        return self.value
