from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Protocol, runtime_checkable

from ..base import SensorReading

_BME280_CHIP_ID = 0x60
_REG_CHIP_ID = 0xD0
_REG_CTRL_HUM = 0xF2
_REG_CTRL_MEAS = 0xF4
_REG_CONFIG = 0xF5
_REG_CALIB_T = 0x88
_REG_CALIB_H1 = 0xA1
_REG_CALIB_H = 0xE1
_REG_RAW = 0xF7


@runtime_checkable
class I2CBus(Protocol):
    def read_byte_data(self, i2c_addr: int, register: int, /) -> int: ...

    def write_byte_data(self, i2c_addr: int, register: int, value: int, /) -> None: ...

    def read_i2c_block_data(self, i2c_addr: int, register: int, length: int, /) -> list[int]: ...


def open_smbus(bus_number: int) -> I2CBus:
    try:
        import smbus2  # type: ignore[import-not-found]
    except ImportError as exc:
        raise RuntimeError(
            "SENSOR_BACKEND=rpi_i2c requires smbus2 (install on Pi: pip install 'dashlink-agent[rpi]')"
        ) from exc
    return smbus2.SMBus(bus_number)


@dataclass(frozen=True)
class BME280Calibration:
    t1: int
    t2: int
    t3: int
    h1: int
    h2: int
    h3: int
    h4: int
    h5: int
    h6: int


def _u16(low: int, high: int) -> int:
    return (high << 8) | low


def _s16(low: int, high: int) -> int:
    value = _u16(low, high)
    return value - 0x10000 if value >= 0x8000 else value


def _signed(value: int, bits: int) -> int:
    sign_bit = 1 << (bits - 1)
    return value - (1 << bits) if value & sign_bit else value


def compensate(*, adc_t: int, adc_h: int, calib: BME280Calibration) -> SensorReading:
    """Floating point compensation from the BME280 datasheet (section 8.1)."""

    var1 = (adc_t / 16384.0 - calib.t1 / 1024.0) * calib.t2
    var2 = ((adc_t / 131072.0 - calib.t1 / 8192.0) ** 2) * calib.t3
    t_fine = var1 + var2

    h = t_fine - 76800.0
    h = (adc_h - (calib.h4 * 64.0 + calib.h5 / 16384.0 * h)) * (
        calib.h2 / 65536.0 * (1.0 + calib.h6 / 67108864.0 * h * (1.0 + calib.h3 / 67108864.0 * h))
    )
    h = h * (1.0 - calib.h1 * h / 524288.0)
    return SensorReading(temperature_c=t_fine / 5120.0, humidity_pct=min(100.0, max(0.0, h)))


@dataclass
class RpiI2CSensorBackend:
    """BME280 temperature/humidity sensor on an I2C bus."""

    bus_number: int = 1
    address: int = 0x76
    bus_factory: Callable[[int], I2CBus] = open_smbus
    _bus: I2CBus | None = field(default=None, init=False, repr=False)
    _calibration: BME280Calibration | None = field(default=None, init=False, repr=False)

    def _open(self) -> tuple[I2CBus, BME280Calibration]:
        if self._bus is not None and self._calibration is not None:
            return self._bus, self._calibration

        bus = self.bus_factory(self.bus_number)
        chip_id = bus.read_byte_data(self.address, _REG_CHIP_ID)
        if chip_id != _BME280_CHIP_ID:
            raise RuntimeError(f"unexpected BME280 chip id 0x{chip_id:02x}")
        bus.write_byte_data(self.address, _REG_CTRL_HUM, 0x01)  # humidity oversampling x1
        bus.write_byte_data(self.address, _REG_CTRL_MEAS, 0x27)  # normal mode
        bus.write_byte_data(self.address, _REG_CONFIG, 0xA0)

        t = bus.read_i2c_block_data(self.address, _REG_CALIB_T, 6)
        h = bus.read_i2c_block_data(self.address, _REG_CALIB_H, 7)
        if len(t) != 6 or len(h) != 7:
            raise RuntimeError("short read of BME280 calibration bytes")

        self._calibration = BME280Calibration(
            t1=_u16(t[0], t[1]),
            t2=_s16(t[2], t[3]),
            t3=_s16(t[4], t[5]),
            h1=bus.read_byte_data(self.address, _REG_CALIB_H1),
            h2=_s16(h[0], h[1]),
            h3=h[2],
            h4=_signed((h[3] << 4) | (h[4] & 0x0F), 12),
            h5=_signed((h[5] << 4) | (h[4] >> 4), 12),
            h6=_signed(h[6], 8),
        )
        self._bus = bus
        return bus, self._calibration

    def read(self) -> SensorReading:
        try:
            bus, calib = self._open()
            raw = bus.read_i2c_block_data(self.address, _REG_RAW, 8)
        except Exception:
            # Force a full re-open (bus + calibration) on the next read.
            self._bus = None
            self._calibration = None
            raise
        if len(raw) != 8:
            raise RuntimeError("short read of BME280 measurement bytes")

        adc_t = (raw[3] << 12) | (raw[4] << 4) | (raw[5] >> 4)
        adc_h = (raw[6] << 8) | raw[7]
        reading = compensate(adc_t=adc_t, adc_h=adc_h, calib=calib)
        return SensorReading(
            temperature_c=round(reading.temperature_c, 1),
            humidity_pct=round(reading.humidity_pct, 1),
        )
